"""Sequential, paced delivery of composed messages.

One request per message, strictly in ordinal order, never concurrent.
A failed message is recorded and skipped; it never stops the batch.
The pacing delay follows every message except the last.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence

import click

from tx_backfill.core.errors import DeliveryError
from tx_backfill.core.interfaces import IMessageSink
from tx_backfill.core.models import ComposedMessage, DeliveryResult

logger = logging.getLogger(__name__)


class DeliveryPipeline:
    """Delivers messages to a sink one at a time.

    Args:
        sink: Message sink.
        pacing_seconds: Delay between consecutive posts.
        sleep: Awaitable sleep, replaceable in tests.
        echo: Progress printer.
    """

    def __init__(
        self,
        sink: IMessageSink,
        pacing_seconds: float = 1.2,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        echo: Callable[..., None] = click.echo,
    ) -> None:
        self._sink = sink
        self._pacing_seconds = pacing_seconds
        self._sleep = sleep
        self._echo = echo

    async def deliver(
        self, messages: Sequence[ComposedMessage]
    ) -> tuple[DeliveryResult, ...]:
        results: list[DeliveryResult] = []
        total = len(messages)

        for position, message in enumerate(messages, start=1):
            results.append(await self._deliver_one(message, position, total))
            if position < total:
                await self._sleep(self._pacing_seconds)

        return tuple(results)

    async def _deliver_one(
        self, message: ComposedMessage, position: int, total: int
    ) -> DeliveryResult:
        try:
            await self._sink.post(message.text)
        except DeliveryError as exc:
            logger.warning("Delivery %d/%d failed: %s", position, total, exc)
            self._echo(f"   ❌ {position}/{total}: {exc}", err=True)
            return DeliveryResult(
                ordinal=message.ordinal,
                success=False,
                error_detail=str(exc),
                status_code=exc.status_code,
            )

        self._echo(f"   ✅ {position}/{total}")
        return DeliveryResult(ordinal=message.ordinal, success=True)
