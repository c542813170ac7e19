"""Tests for a single relay connection and the shared annotation book."""

from __future__ import annotations

import asyncio
import json
from contextlib import asynccontextmanager
from types import SimpleNamespace

import aiohttp
import pytest

from conftest import tx_hash
from tx_backfill.annotations.relay import (
    TRANSITIONS,
    AnnotationBook,
    RelayConnection,
    correlation_key,
    extract_tx_ids,
)
from tx_backfill.core.enums import RelayState

TX1 = tx_hash(1)
TX2 = tx_hash(2)


def _text(frame: list) -> SimpleNamespace:
    return SimpleNamespace(type=aiohttp.WSMsgType.TEXT, data=json.dumps(frame))


def _event(content: str, *txs: str, tag: str = "i") -> list:
    tags = [[tag, f"ethereum:42220:tx:{tx}"] for tx in txs]
    return ["EVENT", "bf-i", {"id": "e", "content": content, "tags": tags}]


class FakeWebSocket:
    """Replays scripted frames, then blocks forever (a silent relay)."""

    def __init__(self, frames: list[SimpleNamespace]) -> None:
        self._frames = list(frames)
        self.sent: list[list] = []

    async def send_str(self, data: str) -> None:
        self.sent.append(json.loads(data))

    async def receive(self) -> SimpleNamespace:
        if self._frames:
            return self._frames.pop(0)
        await asyncio.Event().wait()
        raise AssertionError("unreachable")


def _connector(ws: FakeWebSocket | None = None, error: Exception | None = None):
    @asynccontextmanager
    async def connect(url: str):
        if error is not None:
            raise error
        yield ws

    return connect


def _connection(book: AnnotationBook, connect, timeout: float = 1.0) -> RelayConnection:
    keys = [correlation_key(42220, TX1), correlation_key(42220, TX2)]
    return RelayConnection(
        "wss://relay.test", keys, book, connect=connect, limit=50, timeout=timeout
    )


class TestCorrelation:
    def test_key_is_lowercase(self):
        assert correlation_key(42220, "0xABC") == "ethereum:42220:tx:0xabc"

    def test_extract_both_tag_conventions(self):
        event = {"tags": [
            ["i", "ethereum:42220:tx:0xAA"],
            ["I", "ethereum:42220:tx:0xbb"],
            ["e", "ethereum:42220:tx:0xcc"],
            ["i"],
        ]}
        assert extract_tx_ids(event) == ["0xaa", "0xbb"]

    def test_extract_without_tags(self):
        assert extract_tx_ids({"content": "hi"}) == []

    def test_extract_skips_malformed_tags(self):
        event = {"tags": [7, None, "i", {"i": "x"}, ["i", "ethereum:42220:tx:0xaa"]]}
        assert extract_tx_ids(event) == ["0xaa"]

    def test_extract_non_list_tags(self):
        assert extract_tx_ids({"tags": "i"}) == []


class TestAnnotationBook:
    def test_first_write_wins(self):
        book = AnnotationBook([TX1])
        assert book.record(TX1, "first", relay="a")
        assert not book.record(TX1, "second", relay="b")
        assert book.snapshot() == {TX1: "first"}
        assert book.get(TX1).relay == "a"

    def test_ignores_unrequested_tx(self):
        book = AnnotationBook([TX1])
        assert not book.record(TX2, "noise")
        assert len(book) == 0

    def test_ignores_blank_content(self):
        book = AnnotationBook([TX1])
        assert not book.record(TX1, "   ")
        assert book.record(TX1, "real")

    def test_snapshot_is_read_only(self):
        book = AnnotationBook([TX1])
        book.record(TX1, "x")
        with pytest.raises(TypeError):
            book.snapshot()[TX1] = "y"  # type: ignore[index]


class TestTransitions:
    def test_closed_is_terminal(self):
        assert TRANSITIONS[RelayState.CLOSED] == frozenset()

    def test_every_state_can_close(self):
        for state in (RelayState.CONNECTING, RelayState.SUBSCRIBED, RelayState.DRAINING):
            assert RelayState.CLOSED in TRANSITIONS[state]

    def test_invalid_transition_raises(self):
        conn = _connection(AnnotationBook([]), _connector())
        with pytest.raises(ValueError):
            conn._transition(RelayState.DRAINING)


class TestRelayConnection:
    @pytest.mark.asyncio
    async def test_subscribes_with_both_tags(self):
        ws = FakeWebSocket([_text(["EOSE", "bf-i"]), _text(["EOSE", "bf-I"])])
        conn = _connection(AnnotationBook([TX1]), _connector(ws))

        await conn.run()

        reqs = [frame for frame in ws.sent if frame[0] == "REQ"]
        assert [r[1] for r in reqs] == ["bf-i", "bf-I"]
        assert reqs[0][2]["#i"] == [correlation_key(42220, TX1), correlation_key(42220, TX2)]
        assert reqs[1][2]["#I"] == reqs[0][2]["#i"]
        assert reqs[0][2]["limit"] == 50
        assert ["CLOSE", "bf-i"] in ws.sent and ["CLOSE", "bf-I"] in ws.sent

    @pytest.mark.asyncio
    async def test_drains_after_both_eose(self):
        ws = FakeWebSocket([
            _text(_event("paid for coffee", TX1)),
            _text(["EOSE", "bf-i"]),
            _text(_event("late", TX2, tag="I")),
            _text(["EOSE", "bf-I"]),
        ])
        book = AnnotationBook([TX1, TX2])
        conn = _connection(book, _connector(ws))

        state = await conn.run()

        assert state == RelayState.CLOSED
        assert conn.history == [
            RelayState.CONNECTING, RelayState.SUBSCRIBED,
            RelayState.DRAINING, RelayState.CLOSED,
        ]
        assert book.snapshot() == {TX1: "paid for coffee", TX2: "late"}
        assert conn.recorded == 2

    @pytest.mark.asyncio
    async def test_one_event_annotates_several_txs(self):
        ws = FakeWebSocket([
            _text(_event("batch payout", TX1, TX2)),
            _text(["EOSE", "bf-i"]),
            _text(["EOSE", "bf-I"]),
        ])
        book = AnnotationBook([TX1, TX2])
        await _connection(book, _connector(ws)).run()
        assert book.snapshot() == {TX1: "batch payout", TX2: "batch payout"}

    @pytest.mark.asyncio
    async def test_connect_error_still_completes(self):
        conn = _connection(
            AnnotationBook([TX1]), _connector(error=aiohttp.ClientConnectionError("refused"))
        )
        state = await conn.run()
        assert state == RelayState.CLOSED
        assert conn.history == [RelayState.CONNECTING, RelayState.CLOSED]
        assert "refused" in conn.error

    @pytest.mark.asyncio
    async def test_socket_error_frame_closes(self):
        ws = FakeWebSocket([SimpleNamespace(type=aiohttp.WSMsgType.ERROR, data="reset")])
        conn = _connection(AnnotationBook([TX1]), _connector(ws))
        assert await conn.run() == RelayState.CLOSED
        assert conn.error is not None

    @pytest.mark.asyncio
    async def test_remote_close_keeps_recorded(self):
        ws = FakeWebSocket([
            _text(_event("kept", TX1)),
            SimpleNamespace(type=aiohttp.WSMsgType.CLOSED, data=None),
        ])
        book = AnnotationBook([TX1])
        conn = _connection(book, _connector(ws))
        assert await conn.run() == RelayState.CLOSED
        assert book.snapshot() == {TX1: "kept"}
        assert conn.error is None

    @pytest.mark.asyncio
    async def test_silent_relay_times_out(self):
        ws = FakeWebSocket([_text(_event("partial", TX1))])
        book = AnnotationBook([TX1])
        conn = _connection(book, _connector(ws), timeout=0.05)

        assert await conn.run() == RelayState.CLOSED
        assert conn.history[-2] == RelayState.SUBSCRIBED
        assert book.snapshot() == {TX1: "partial"}

    @pytest.mark.asyncio
    async def test_garbage_frames_ignored(self):
        ws = FakeWebSocket([
            SimpleNamespace(type=aiohttp.WSMsgType.TEXT, data="not json"),
            _text({"not": "a list"}),
            _text(["NOTICE", "rate limited"]),
            _text(["EOSE", "unknown-sub"]),
            _text(["EOSE", "bf-i"]),
            _text(["CLOSED", "bf-I", "error: too many"]),
        ])
        conn = _connection(AnnotationBook([TX1]), _connector(ws))
        assert await conn.run() == RelayState.CLOSED
        assert RelayState.DRAINING in conn.history

    @pytest.mark.asyncio
    async def test_malformed_events_do_not_end_the_stream(self):
        ws = FakeWebSocket([
            _text(["EVENT", "bf-i", {"content": "bad tags", "tags": [7, ["i", f"ethereum:42220:tx:{TX1}"]]}]),
            _text(["EVENT", "bf-i", {"content": {"not": "text"}, "tags": [["i", f"ethereum:42220:tx:{TX2}"]]}]),
            _text(_event("still read", TX2)),
            _text(["EOSE", "bf-i"]),
            _text(["EOSE", "bf-I"]),
        ])
        book = AnnotationBook([TX1, TX2])
        conn = _connection(book, _connector(ws))

        assert await conn.run() == RelayState.CLOSED
        assert conn.error is None
        assert RelayState.DRAINING in conn.history
        assert book.snapshot() == {TX1: "bad tags", TX2: "still read"}
