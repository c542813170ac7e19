"""Configuration management.

Loads from an optional TOML config file + environment variables.
Uses pydantic-settings for validation and env var overriding.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings

from .enums import LogFormat

# Last transfer posted before the backfill tool existed.
DEFAULT_AFTER_TX = "0x7212ba265a0ade1d73c3c8e1c9eed67c1c5877b7c3d4cae3eb92aba49076ecc3"


# ---------------------------------------------------------------------------
# Sub-configs
# ---------------------------------------------------------------------------

class ChainConfig(BaseModel):
    name: str = "celo"
    chain_id: int = 42220
    rpc_url: str = "https://forno.celo.org"
    explorer_url: str = "https://txinfo.xyz/celo"
    timeout: float = 30.0  # seconds per request
    max_retries: int = 3
    base_backoff: float = 1.0  # seconds
    block_lookup_concurrency: int = 8


class TokenConfig(BaseModel):
    address: str = "0x65dd32834927de9e57e72a3e2130a19f81c6371d"
    symbol: str = "CHT"
    decimals: int = 6


class IdentityConfig(BaseModel):
    card_manager_address: str = "0xBA861e2DABd8316cf11Ae7CdA101d110CF581f28"
    instance_id: str = "cw-discord-1"
    page_size: int = 1000  # Discord max for guild member listing


class AnnotationConfig(BaseModel):
    relays: list[str] = Field(
        default_factory=lambda: [
            "wss://relay.damus.io",
            "wss://nos.lol",
            "wss://relay.primal.net",
        ]
    )
    timeout_seconds: float = 12.0  # global ceiling for all relays
    connection_timeout_seconds: float = 10.0  # per relay socket
    limit: int = 200
    subscription_prefix: str = "bf"


class DiscordConfig(BaseModel):
    api_base: str = "https://discord.com/api/v10"
    token_env: str = "DISCORD_BOT_TOKEN"  # Name of env var holding the bot token
    guild_id_env: str = "DISCORD_GUILD_ID"
    channel_id_env: str = "CHANNEL_ID"
    default_guild_id: str = "1280532848604086365"
    default_channel_id: str = "1354115945718878269"
    channel_name: str = "cht-transactions"
    timeout: float = 30.0

    @property
    def bot_token(self) -> str:
        return os.environ.get(self.token_env, "")

    @property
    def guild_id(self) -> str:
        return os.environ.get(self.guild_id_env) or self.default_guild_id

    @property
    def channel_id(self) -> str:
        return os.environ.get(self.channel_id_env) or self.default_channel_id


class DeliveryConfig(BaseModel):
    pacing_seconds: float = 1.2  # between posts, Discord rate limit
    max_rate_limit_retries: int = 3


class ObservabilityConfig(BaseModel):
    log_level: str = "WARNING"
    log_format: LogFormat = LogFormat.CONSOLE


# ---------------------------------------------------------------------------
# Top-level settings
# ---------------------------------------------------------------------------

class Settings(BaseSettings):
    """Top-level application settings.

    Loaded from TOML config files, overridden by environment variables.
    """

    after_tx: str = DEFAULT_AFTER_TX

    chain: ChainConfig = Field(default_factory=ChainConfig)
    token: TokenConfig = Field(default_factory=TokenConfig)
    identity: IdentityConfig = Field(default_factory=IdentityConfig)
    annotations: AnnotationConfig = Field(default_factory=AnnotationConfig)
    discord: DiscordConfig = Field(default_factory=DiscordConfig)
    delivery: DeliveryConfig = Field(default_factory=DeliveryConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)

    model_config = {"env_prefix": "BACKFILL_", "env_nested_delimiter": "__"}

    @property
    def token_url(self) -> str:
        return f"{self.chain.explorer_url}/token/{self.token.address}"

    def tx_url(self, tx_id: str) -> str:
        return f"{self.chain.explorer_url}/tx/{tx_id}"

    def validate_credentials(self) -> None:
        """Fail fast when the bot credential is missing."""
        from .errors import MissingCredentialError

        if not self.discord.bot_token:
            raise MissingCredentialError(
                f"{self.discord.token_env} is required"
            )


def load_settings(
    config_path: str | Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> Settings:
    """Load settings from TOML file + env vars.

    Args:
        config_path: Path to TOML config file (optional).
        overrides: Dict of overrides to apply on top.
    """
    data: dict[str, Any] = {}

    if config_path:
        path = Path(config_path)
        if path.exists():
            import tomli

            with open(path, "rb") as f:
                data = tomli.load(f)

    if overrides:
        data.update(overrides)

    return Settings(**data)
