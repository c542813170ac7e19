"""Custom exception hierarchy for the transaction backfill."""


class BackfillError(Exception):
    """Base exception for all backfill errors."""


# --- Configuration ---
class ConfigError(BackfillError):
    """Invalid or missing configuration."""


class MissingCredentialError(ConfigError):
    """A required credential (e.g. DISCORD_BOT_TOKEN) is not set."""


# --- Chain ---
class ChainError(BackfillError):
    """Chain RPC communication error."""


class ReferenceNotFound(ChainError):
    """The starting reference transaction cannot be located on chain."""

    def __init__(self, reference: str):
        self.reference = reference
        super().__init__(f"Reference transaction not found: {reference}")


class RpcError(ChainError):
    """JSON-RPC call failed (transport error or error object)."""

    def __init__(self, method: str, detail: str):
        self.method = method
        self.detail = detail
        super().__init__(f"RPC {method} failed: {detail}")


# --- Identity ---
class DirectoryError(BackfillError):
    """Member directory error."""


class DirectoryFetchError(DirectoryError):
    """A directory page request failed. Fatal to the run."""


class IdentityLookupError(BackfillError):
    """Deriving the wallet address for a single candidate failed."""


# --- Annotations ---
class RelayError(BackfillError):
    """A single relay connection failed."""


# --- Delivery ---
class DeliveryError(BackfillError):
    """The sink rejected a single message."""

    def __init__(self, status_code: int | None, detail: str):
        self.status_code = status_code
        self.detail = detail
        if status_code is None:
            super().__init__(detail)
        else:
            super().__init__(f"Discord POST {status_code}: {detail}")
