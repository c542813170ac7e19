"""Discord guild member directory.

Lists guild members page by page (``limit`` + ``after`` cursor) and
yields them as ``IdentityCandidate``s in directory order. Pages are
fetched lazily so a resolver that finishes early never requests the
remaining pages.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx

from tx_backfill.core.errors import DirectoryFetchError
from tx_backfill.core.models import IdentityCandidate

logger = logging.getLogger(__name__)

_FIRST_CURSOR = "0"


def candidate_from_member(member: dict[str, Any]) -> IdentityCandidate:
    """Guild nickname, then global display name, then username."""
    user = member["user"]
    display_name = member.get("nick") or user.get("global_name") or user["username"]
    return IdentityCandidate(
        external_id=user["id"],
        display_name=display_name,
        derivation_input=user["id"],
    )


class DiscordMemberDirectory:
    """Cursor-paginated listing of a guild's members.

    Parameters
    ----------
    api_base:
        Discord REST base URL, e.g. ``https://discord.com/api/v10``.
    bot_token:
        Bot credential.
    guild_id:
        Guild to list.
    page_size:
        Members per page (Discord max is 1000).
    timeout:
        HTTP request timeout in seconds.
    """

    def __init__(
        self,
        api_base: str,
        bot_token: str,
        guild_id: str,
        *,
        page_size: int = 1000,
        timeout: float = 30.0,
    ) -> None:
        self._api_base = api_base.rstrip("/")
        self._bot_token = bot_token
        self._guild_id = guild_id
        self._page_size = page_size
        self._timeout = timeout
        self._client: httpx.AsyncClient | None = None
        self.fetched = 0

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

    async def __aenter__(self) -> DiscordMemberDirectory:
        await self.open()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def fetch_page(self, after: str) -> list[dict[str, Any]]:
        """Fetch one page of members after the given user id."""
        if self._client is None:
            raise RuntimeError("Directory not opened. Use 'async with' or call open().")

        url = f"{self._api_base}/guilds/{self._guild_id}/members"
        try:
            resp = await self._client.get(
                url, params={"limit": self._page_size, "after": after}
            )
        except httpx.HTTPError as exc:
            raise DirectoryFetchError(f"Discord API request failed: {exc}") from exc

        if resp.status_code != 200:
            raise DirectoryFetchError(f"Discord API {resp.status_code}: {resp.text}")
        return resp.json()

    async def iter_candidates(self) -> AsyncIterator[IdentityCandidate]:
        """Yield every member in directory order, one page at a time."""
        cursor = _FIRST_CURSOR
        page = 0
        while True:
            page += 1
            batch = await self.fetch_page(cursor)
            if not batch:
                break

            self.fetched += len(batch)
            logger.debug("Member page %d: %d members", page, len(batch))
            for member in batch:
                yield candidate_from_member(member)

            if len(batch) < self._page_size:
                break
            cursor = batch[-1]["user"]["id"]
