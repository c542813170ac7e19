"""Best-effort annotation gathering across independent relays.

One ``RelayConnection`` task per relay, all writing into one
``AnnotationBook``. Aggregation converges when every connection has
finished or the global ceiling elapses, whichever comes first; a slow
relay never holds the pipeline past the ceiling.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Any, Protocol

import aiohttp

from tx_backfill.annotations.relay import AnnotationBook, RelayConnection, correlation_key

logger = logging.getLogger(__name__)


class _Runnable(Protocol):
    url: str

    async def run(self) -> Any: ...


ConnectionFactory = Callable[[str, list[str], AnnotationBook], _Runnable]


class AnnotationAggregator:
    """Collects tx annotations from a fixed list of relays.

    Parameters
    ----------
    relays:
        Relay websocket URLs.
    chain_id:
        Chain id embedded in the correlation keys.
    timeout:
        Global ceiling in seconds.
    connection_timeout:
        Per-relay socket timeout in seconds.
    limit:
        Per-subscription result limit.
    subscription_prefix:
        Prefix for subscription ids.
    connection_factory:
        Builds a connection for ``(url, keys, book)``. Defaults to a
        ``RelayConnection`` over a shared ``aiohttp.ClientSession``.
    """

    def __init__(
        self,
        relays: Sequence[str],
        chain_id: int,
        *,
        timeout: float = 12.0,
        connection_timeout: float = 10.0,
        limit: int = 200,
        subscription_prefix: str = "bf",
        connection_factory: ConnectionFactory | None = None,
    ) -> None:
        self._relays = list(relays)
        self._chain_id = chain_id
        self._timeout = timeout
        self._connection_timeout = connection_timeout
        self._limit = limit
        self._subscription_prefix = subscription_prefix
        self._connection_factory = connection_factory
        self.completed_relays = 0

    async def gather(self, tx_ids: Iterable[str]) -> Mapping[str, str]:
        """Return the tx id → content mapping accumulated at convergence."""
        tx_ids = [tx.lower() for tx in tx_ids]
        book = AnnotationBook(tx_ids)
        if not tx_ids or not self._relays:
            return book.snapshot()

        keys = [correlation_key(self._chain_id, tx) for tx in tx_ids]
        loop = asyncio.get_running_loop()
        started = loop.time()

        if self._connection_factory is not None:
            connections = [self._connection_factory(url, keys, book) for url in self._relays]
            await self._race(connections)
        else:
            async with aiohttp.ClientSession() as session:
                connections = [
                    RelayConnection(
                        url,
                        keys,
                        book,
                        connect=session.ws_connect,
                        limit=self._limit,
                        subscription_prefix=self._subscription_prefix,
                        timeout=self._connection_timeout,
                    )
                    for url in self._relays
                ]
                await self._race(connections)

        logger.info(
            "Found %d annotations (%d/%d relays complete) in %.1fs",
            len(book), self.completed_relays, len(self._relays),
            loop.time() - started,
        )
        return book.snapshot()

    async def _race(self, connections: list[_Runnable]) -> None:
        """Wait for every connection or the ceiling; cancel stragglers."""
        tasks = [
            asyncio.create_task(conn.run(), name=f"relay:{conn.url}")
            for conn in connections
        ]
        try:
            done, pending = await asyncio.wait(tasks, timeout=self._timeout)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        self.completed_relays = 0
        for task in done:
            exc = None if task.cancelled() else task.exception()
            if exc is not None:
                logger.warning("Relay task %s failed: %s", task.get_name(), exc)
            self.completed_relays += 1

        if pending:
            logger.info(
                "Annotation ceiling (%.1fs) reached with %d relay(s) pending",
                self._timeout, len(pending),
            )
