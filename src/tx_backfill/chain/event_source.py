"""Replay of token Transfer events from a reference transaction to head.

Raw ``eth_getLogs`` entries are normalized into ``TransferEvent``s and
returned in log order (ascending block, then log index). That order is
the canonical ordinal for every downstream stage.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from tx_backfill.chain.abi import NULL_ADDRESS, TRANSFER_TOPIC, decode_address, decode_uint
from tx_backfill.chain.rpc import hex_to_int
from tx_backfill.core.config import TokenConfig
from tx_backfill.core.enums import TransferKind
from tx_backfill.core.errors import ReferenceNotFound
from tx_backfill.core.interfaces import IChainClient
from tx_backfill.core.models import TransferEvent

logger = logging.getLogger(__name__)


def classify_transfer(from_addr: str, to_addr: str) -> TransferKind:
    """Mint if minted from the null address, Burn if sent to it, else Transfer."""
    if from_addr.lower() == NULL_ADDRESS:
        return TransferKind.MINT
    if to_addr.lower() == NULL_ADDRESS:
        return TransferKind.BURN
    return TransferKind.TRANSFER


def normalize_amount(raw_value: int, decimals: int) -> Decimal:
    return Decimal(raw_value) / (Decimal(10) ** decimals)


def _log_position(log: dict[str, Any]) -> tuple[int, int]:
    return hex_to_int(log.get("blockNumber")), hex_to_int(log.get("logIndex"))


def normalize_transfer_log(
    log: dict[str, Any],
    decimals: int,
    timestamp: datetime,
) -> TransferEvent:
    """Convert a raw Transfer log entry into a canonical ``TransferEvent``."""
    topics = log["topics"]
    if len(topics) < 3:
        raise ValueError(f"Transfer log without indexed from/to: {log.get('transactionHash')}")
    from_addr = decode_address(topics[1])
    to_addr = decode_address(topics[2])
    block_number, log_index = _log_position(log)
    return TransferEvent(
        kind=classify_transfer(from_addr, to_addr),
        tx_id=log["transactionHash"].lower(),
        counterparty_from=from_addr,
        counterparty_to=to_addr,
        amount=normalize_amount(decode_uint(log.get("data", "0x")), decimals),
        timestamp=timestamp,
        block_number=block_number,
        log_index=log_index,
    )


class EventSource:
    """Replays a token's Transfer log after a reference transaction.

    Parameters
    ----------
    client:
        Chain RPC client.
    token:
        Token contract and its decimals.
    block_lookup_concurrency:
        Maximum concurrent ``eth_getBlockByNumber`` calls.
    """

    def __init__(
        self,
        client: IChainClient,
        token: TokenConfig,
        *,
        block_lookup_concurrency: int = 8,
    ) -> None:
        self._client = client
        self._token = token
        self._semaphore = asyncio.Semaphore(max(1, block_lookup_concurrency))

    async def replay(self, after_tx: str) -> tuple[TransferEvent, ...]:
        """Return every Transfer strictly after ``after_tx`` up to the head."""
        receipt = await self._client.get_transaction_receipt(after_tx)
        if not receipt:
            raise ReferenceNotFound(after_tx)

        start_block = hex_to_int(receipt["blockNumber"]) + 1
        logger.info("Replaying %s transfers from block %d", self._token.symbol, start_block)

        logs = await self._client.get_logs(
            address=self._token.address,
            topics=[TRANSFER_TOPIC],
            from_block=start_block,
            to_block="latest",
        )
        logs = sorted(
            (log for log in logs if not log.get("removed")),
            key=_log_position,
        )
        if not logs:
            return ()

        timestamps = await self._block_timestamps(
            {hex_to_int(log["blockNumber"]) for log in logs}
        )
        events = tuple(
            normalize_transfer_log(
                log,
                self._token.decimals,
                timestamps[hex_to_int(log["blockNumber"])],
            )
            for log in logs
        )
        logger.info("Replayed %d transfers (blocks %d..%d)",
                    len(events), events[0].block_number, events[-1].block_number)
        return events

    async def _block_timestamps(self, blocks: set[int]) -> dict[int, datetime]:
        """Fetch one timestamp per distinct block, concurrently."""

        async def fetch(number: int) -> tuple[int, datetime]:
            async with self._semaphore:
                block = await self._client.get_block(number)
            ts = hex_to_int(block["timestamp"])
            return number, datetime.fromtimestamp(ts, tz=timezone.utc)

        pairs = await asyncio.gather(*(fetch(n) for n in sorted(blocks)))
        return dict(pairs)
