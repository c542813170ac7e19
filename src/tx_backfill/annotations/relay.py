"""Single Nostr relay connection as an explicit state machine.

Every connection follows the same lifecycle:

    CONNECTING -> SUBSCRIBED -> DRAINING -> CLOSED

Any state may jump straight to CLOSED (socket closed, error, timeout,
cancellation). CLOSED is terminal. Completing ``run()`` is the one
completion signal the aggregator consumes.

Two subscriptions are opened per connection, one with the lowercase
``#i`` tag filter and one with the uppercase ``#I`` filter, both over
the same correlation keys. The connection is drained once both have
reported end-of-stored-events.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from collections.abc import Callable, Iterable, Mapping
from contextlib import AbstractAsyncContextManager
from types import MappingProxyType
from typing import Any

import aiohttp

from tx_backfill.core.enums import RelayState
from tx_backfill.core.errors import RelayError
from tx_backfill.core.models import Annotation

logger = logging.getLogger(__name__)

TAG_CONVENTIONS: tuple[str, ...] = ("i", "I")

_TX_ID_PATTERN = re.compile(r"tx:(0x[a-fA-F0-9]+)")

TRANSITIONS: dict[RelayState, frozenset[RelayState]] = {
    RelayState.CONNECTING: frozenset({RelayState.SUBSCRIBED, RelayState.CLOSED}),
    RelayState.SUBSCRIBED: frozenset({RelayState.DRAINING, RelayState.CLOSED}),
    RelayState.DRAINING: frozenset({RelayState.CLOSED}),
    RelayState.CLOSED: frozenset(),
}

Connector = Callable[[str], AbstractAsyncContextManager[Any]]


def correlation_key(chain_id: int, tx_id: str) -> str:
    """NIP-73 external id for an EVM transaction."""
    return f"ethereum:{chain_id}:tx:{tx_id}".lower()


def extract_tx_ids(event: dict[str, Any]) -> list[str]:
    """Transaction ids referenced by an event's ``i``/``I`` tags."""
    tx_ids: list[str] = []
    tags = event.get("tags")
    if not isinstance(tags, (list, tuple)):
        return tx_ids
    for tag in tags:
        if not isinstance(tag, (list, tuple)) or len(tag) < 2 or tag[0] not in TAG_CONVENTIONS:
            continue
        match = _TX_ID_PATTERN.search(str(tag[1]))
        if match:
            tx_ids.append(match.group(1).lower())
    return tx_ids


class AnnotationBook:
    """Shared tx id → annotation store. First write wins.

    ``record`` never awaits, so on a single event loop the
    check-then-set cannot interleave between connections.
    """

    def __init__(self, tx_ids: Iterable[str]) -> None:
        self._wanted = frozenset(tx.lower() for tx in tx_ids)
        self._entries: dict[str, Annotation] = {}

    def record(self, tx_id: str, content: str, relay: str = "") -> bool:
        """Store ``content`` for ``tx_id`` unless one is already stored."""
        tx_id = tx_id.lower()
        if tx_id not in self._wanted or tx_id in self._entries:
            return False
        if not content.strip():
            return False
        self._entries[tx_id] = Annotation(tx_id=tx_id, content=content, relay=relay)
        return True

    def get(self, tx_id: str) -> Annotation | None:
        return self._entries.get(tx_id.lower())

    def snapshot(self) -> Mapping[str, str]:
        return MappingProxyType({tx: a.content for tx, a in self._entries.items()})

    def __len__(self) -> int:
        return len(self._entries)


class RelayConnection:
    """One websocket to one relay, two subscriptions.

    Args:
        url: Relay websocket URL.
        correlation_keys: External ids to filter on.
        book: Shared annotation store.
        connect: Opens the websocket, e.g. ``aiohttp.ClientSession.ws_connect``.
        limit: Per-subscription result limit.
        subscription_prefix: Prefix for subscription ids.
        timeout: Seconds before a stalled socket is closed.
    """

    def __init__(
        self,
        url: str,
        correlation_keys: list[str],
        book: AnnotationBook,
        *,
        connect: Connector,
        limit: int = 200,
        subscription_prefix: str = "bf",
        timeout: float = 10.0,
    ) -> None:
        self.url = url
        self._keys = correlation_keys
        self._book = book
        self._connect = connect
        self._limit = limit
        self._timeout = timeout
        self.subscriptions: dict[str, str] = {
            f"{subscription_prefix}-{tag}": tag for tag in TAG_CONVENTIONS
        }
        self._pending: set[str] = set()

        self.state = RelayState.CONNECTING
        self.history: list[RelayState] = [self.state]
        self.recorded = 0
        self.error: str | None = None

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _transition(self, target: RelayState) -> None:
        if target not in TRANSITIONS[self.state]:
            raise ValueError(
                f"Invalid relay transition {self.state.value} -> {target.value} ({self.url})"
            )
        self.state = target
        self.history.append(target)

    @property
    def is_closed(self) -> bool:
        return self.state == RelayState.CLOSED

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def run(self) -> RelayState:
        """Drive the connection to CLOSED. Errors never escape."""
        try:
            await asyncio.wait_for(self._session(), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.info("Relay %s stalled after %.1fs, closing", self.url, self._timeout)
        except (aiohttp.ClientError, RelayError, OSError) as exc:
            self.error = str(exc) or type(exc).__name__
            logger.warning("Relay %s failed: %s", self.url, self.error)
        finally:
            if not self.is_closed:
                self._transition(RelayState.CLOSED)
        return self.state

    async def _session(self) -> None:
        async with self._connect(self.url) as ws:
            for sub_id, tag in self.subscriptions.items():
                await ws.send_str(json.dumps(
                    ["REQ", sub_id, {f"#{tag}": self._keys, "limit": self._limit}]
                ))
            self._pending = set(self.subscriptions)
            self._transition(RelayState.SUBSCRIBED)

            while self._pending:
                msg = await ws.receive()
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self.handle_frame(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    raise RelayError(f"websocket error: {msg.data}")
                elif msg.type in (
                    aiohttp.WSMsgType.CLOSE,
                    aiohttp.WSMsgType.CLOSING,
                    aiohttp.WSMsgType.CLOSED,
                ):
                    logger.debug("Relay %s closed the socket", self.url)
                    return

            for sub_id in self.subscriptions:
                await ws.send_str(json.dumps(["CLOSE", sub_id]))
            logger.debug("Relay %s drained (%d recorded)", self.url, self.recorded)

    # ------------------------------------------------------------------
    # Frames
    # ------------------------------------------------------------------

    def handle_frame(self, raw: str) -> None:
        try:
            frame = json.loads(raw)
        except ValueError:
            logger.debug("Relay %s sent non-JSON frame", self.url)
            return
        if not isinstance(frame, list) or not frame:
            return

        kind = frame[0]
        if kind == "EVENT" and len(frame) >= 3 and isinstance(frame[2], dict):
            self._on_event(frame[2])
        elif kind in ("EOSE", "CLOSED") and len(frame) >= 2:
            self._finish_subscription(frame[1])
        elif kind == "NOTICE":
            logger.info("Relay %s notice: %s", self.url, frame[1:] if len(frame) > 1 else "")

    def _on_event(self, event: dict[str, Any]) -> None:
        content = event.get("content")
        if not isinstance(content, str):
            content = ""
        for tx_id in extract_tx_ids(event):
            if self._book.record(tx_id, content, relay=self.url):
                self.recorded += 1

    def _finish_subscription(self, sub_id: str) -> None:
        if sub_id not in self._pending:
            return
        self._pending.discard(sub_id)
        if self.state == RelayState.SUBSCRIBED:
            self._transition(RelayState.DRAINING)
