"""Shared fixtures for the tx-backfill test suite."""

from __future__ import annotations

from collections.abc import AsyncIterator, Sequence
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

import pytest

from tx_backfill.chain.abi import NULL_ADDRESS, TRANSFER_TOPIC
from tx_backfill.core.config import Settings
from tx_backfill.core.enums import TransferKind
from tx_backfill.core.errors import DeliveryError, IdentityLookupError
from tx_backfill.core.models import IdentityCandidate, TransferEvent


def address(n: int) -> str:
    """Deterministic lowercase 20-byte address."""
    return "0x" + f"{n:040x}"


def tx_hash(n: int) -> str:
    return "0x" + f"{n:064x}"


def topic_for(addr: str) -> str:
    return "0x" + addr[2:].rjust(64, "0")


def make_log(
    tx: str,
    from_addr: str,
    to_addr: str,
    raw_value: int,
    *,
    block: int = 100,
    log_index: int = 0,
    removed: bool = False,
) -> dict[str, Any]:
    """Raw ``eth_getLogs`` Transfer entry."""
    return {
        "transactionHash": tx,
        "blockNumber": hex(block),
        "logIndex": hex(log_index),
        "topics": [TRANSFER_TOPIC, topic_for(from_addr), topic_for(to_addr)],
        "data": "0x" + f"{raw_value:064x}",
        "removed": removed,
    }


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------

@pytest.fixture
def make_event():
    """Factory for ``TransferEvent``s."""

    def _make(
        kind: TransferKind = TransferKind.TRANSFER,
        tx: str | None = None,
        from_addr: str | None = None,
        to_addr: str | None = None,
        amount: str = "100",
        block: int = 100,
        log_index: int = 0,
    ) -> TransferEvent:
        if kind == TransferKind.MINT:
            from_addr = NULL_ADDRESS
        elif kind == TransferKind.BURN:
            to_addr = NULL_ADDRESS
        return TransferEvent(
            kind=kind,
            tx_id=tx or tx_hash(block * 1000 + log_index),
            counterparty_from=from_addr or address(1),
            counterparty_to=to_addr or address(2),
            amount=Decimal(amount),
            timestamp=datetime(2025, 3, 1, tzinfo=timezone.utc),
            block_number=block,
            log_index=log_index,
        )

    return _make


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

class FakeChainClient:
    """In-memory chain: receipts, logs, blocks and eth_call results."""

    def __init__(
        self,
        receipts: dict[str, dict[str, Any]] | None = None,
        logs: list[dict[str, Any]] | None = None,
        block_times: dict[int, int] | None = None,
        call_results: dict[str, str] | None = None,
    ) -> None:
        self.receipts = receipts or {}
        self.logs = logs or []
        self.block_times = block_times or {}
        self.call_results = call_results or {}
        self.log_queries: list[dict[str, Any]] = []
        self.block_queries: list[int] = []
        self.calls: list[tuple[str, str]] = []

    async def get_transaction_receipt(self, tx_hash: str) -> dict[str, Any] | None:
        return self.receipts.get(tx_hash)

    async def get_logs(self, address, topics, from_block, to_block="latest"):
        self.log_queries.append(
            {"address": address, "topics": list(topics),
             "from_block": from_block, "to_block": to_block}
        )
        return [
            log for log in self.logs
            if int(log["blockNumber"], 16) >= from_block
        ]

    async def get_block(self, number: int) -> dict[str, Any]:
        self.block_queries.append(number)
        return {"number": hex(number), "timestamp": hex(self.block_times.get(number, 1_740_787_200))}

    async def call(self, to: str, data: str) -> str:
        self.calls.append((to, data))
        return self.call_results.get(data, "0x" + "0" * 64)


class FakeDirectory:
    """Member directory over a fixed candidate list, paged lazily."""

    def __init__(self, candidates: Sequence[IdentityCandidate], page_size: int = 2) -> None:
        self._candidates = list(candidates)
        self._page_size = page_size
        self.pages_fetched = 0
        self.yielded = 0

    async def iter_candidates(self) -> AsyncIterator[IdentityCandidate]:
        for start in range(0, len(self._candidates), self._page_size):
            self.pages_fetched += 1
            for candidate in self._candidates[start:start + self._page_size]:
                self.yielded += 1
                yield candidate


class FakeDeriver:
    """Derives from a lookup table; listed inputs fail."""

    def __init__(self, wallets: dict[str, str], failing: set[str] | None = None) -> None:
        self._wallets = wallets
        self._failing = failing or set()
        self.derived: list[str] = []

    async def derive(self, derivation_input: str) -> str:
        self.derived.append(derivation_input)
        if derivation_input in self._failing:
            raise IdentityLookupError(f"lookup failed for {derivation_input}")
        return self._wallets.get(derivation_input, address(0xDEAD))


class FakeSink:
    """Records posts; 1-based call numbers in ``fail_on`` are rejected."""

    def __init__(self, fail_on: set[int] | None = None, status_code: int = 400) -> None:
        self._fail_on = fail_on or set()
        self._status_code = status_code
        self.attempts: list[str] = []
        self.posted: list[str] = []

    async def post(self, content: str) -> None:
        self.attempts.append(content)
        if len(self.attempts) in self._fail_on:
            raise DeliveryError(self._status_code, '{"message": "Invalid Form Body"}')
        self.posted.append(content)


class FakeAggregator:
    def __init__(self, annotations: dict[str, str] | None = None) -> None:
        self._annotations = annotations or {}
        self.requested: list[str] = []

    async def gather(self, tx_ids):
        self.requested = list(tx_ids)
        return {tx: text for tx, text in self._annotations.items() if tx in self.requested}


def candidate(user_id: str, name: str | None = None) -> IdentityCandidate:
    return IdentityCandidate(
        external_id=user_id,
        display_name=name or f"user{user_id}",
        derivation_input=user_id,
    )


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

@pytest.fixture
def bot_token(monkeypatch) -> str:
    monkeypatch.setenv("DISCORD_BOT_TOKEN", "test-token")
    return "test-token"


@pytest.fixture
def settings(bot_token) -> Settings:
    return Settings()


@pytest.fixture
def no_sleep():
    """Recording replacement for ``asyncio.sleep``."""
    delays: list[float] = []

    async def _sleep(seconds: float) -> None:
        delays.append(seconds)

    _sleep.delays = delays  # type: ignore[attr-defined]
    return _sleep
