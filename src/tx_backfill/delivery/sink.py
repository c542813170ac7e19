"""Discord channel sink: one POST per message.

HTTP 429 responses are retried after Discord's ``retry_after``; any
other non-2xx response raises ``DeliveryError`` with status and body.
"""

from __future__ import annotations

import asyncio
import logging

import httpx

from tx_backfill.core.errors import DeliveryError

logger = logging.getLogger(__name__)

_DEFAULT_RETRY_AFTER = 1.0


class DiscordChannelSink:
    """Posts message content to a single Discord channel.

    Parameters
    ----------
    api_base:
        Discord REST base URL.
    bot_token:
        Bot credential.
    channel_id:
        Target channel.
    max_rate_limit_retries:
        Extra attempts after a 429 before giving up.
    timeout:
        HTTP request timeout in seconds.
    """

    def __init__(
        self,
        api_base: str,
        bot_token: str,
        channel_id: str,
        *,
        max_rate_limit_retries: int = 3,
        timeout: float = 30.0,
    ) -> None:
        self._url = f"{api_base.rstrip('/')}/channels/{channel_id}/messages"
        self._bot_token = bot_token
        self.channel_id = channel_id
        self._max_rate_limit_retries = max_rate_limit_retries
        self._timeout = timeout
        self._client: httpx.AsyncClient | None = None
        self.sent_count = 0

    async def open(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                headers={"Authorization": f"Bot {self._bot_token}"},
            )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> DiscordChannelSink:
        await self.open()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def post(self, content: str) -> None:
        """Send one message. Raises ``DeliveryError`` on rejection."""
        if self._client is None:
            raise RuntimeError("Sink not opened. Use 'async with' or call open().")

        for attempt in range(self._max_rate_limit_retries + 1):
            try:
                resp = await self._client.post(self._url, json={"content": content})
            except httpx.HTTPError as exc:
                raise DeliveryError(None, f"request failed: {exc}") from exc

            if resp.is_success:
                self.sent_count += 1
                return

            if resp.status_code == 429 and attempt < self._max_rate_limit_retries:
                retry_after = _retry_after(resp)
                logger.warning(
                    "Discord rate limited, sleeping %.2fs (attempt %d/%d)",
                    retry_after, attempt + 1, self._max_rate_limit_retries,
                )
                await asyncio.sleep(retry_after)
                continue

            raise DeliveryError(resp.status_code, resp.text)


def _retry_after(resp: httpx.Response) -> float:
    """Seconds to wait, from the JSON body or the Retry-After header."""
    try:
        body = resp.json()
    except ValueError:
        body = {}
    value = body.get("retry_after") if isinstance(body, dict) else None
    if value is None:
        value = resp.headers.get("Retry-After", _DEFAULT_RETRY_AFTER)
    try:
        return max(0.0, float(value))
    except (TypeError, ValueError):
        return _DEFAULT_RETRY_AFTER
