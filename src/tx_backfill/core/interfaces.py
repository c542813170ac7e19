"""Protocol interfaces for the backfill collaborators.

Every external boundary is defined here as a Protocol class so the
pipeline can be wired with real clients or in-memory fakes.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterable, Mapping, Sequence
from typing import Any, Protocol, runtime_checkable

from .models import IdentityCandidate, IdentityMap, TransferEvent


# ---------------------------------------------------------------------------
# Chain
# ---------------------------------------------------------------------------

@runtime_checkable
class IChainClient(Protocol):
    """Read-only chain JSON-RPC surface."""

    async def get_transaction_receipt(self, tx_hash: str) -> dict[str, Any] | None: ...

    async def get_logs(
        self,
        address: str,
        topics: Sequence[str | None],
        from_block: int,
        to_block: int | str = "latest",
    ) -> list[dict[str, Any]]: ...

    async def get_block(self, number: int) -> dict[str, Any]: ...

    async def call(self, to: str, data: str) -> str: ...


@runtime_checkable
class IEventSource(Protocol):
    async def replay(self, after_tx: str) -> tuple[TransferEvent, ...]: ...


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------

@runtime_checkable
class IMemberDirectory(Protocol):
    """Paginated identity directory, yielded in directory order."""

    def iter_candidates(self) -> AsyncIterator[IdentityCandidate]: ...


@runtime_checkable
class IAddressDeriver(Protocol):
    async def derive(self, derivation_input: str) -> str: ...


@runtime_checkable
class IIdentityResolver(Protocol):
    async def resolve(self, addresses: Iterable[str]) -> IdentityMap: ...


# ---------------------------------------------------------------------------
# Annotations
# ---------------------------------------------------------------------------

@runtime_checkable
class IAnnotationAggregator(Protocol):
    async def gather(self, tx_ids: Iterable[str]) -> Mapping[str, str]: ...


# ---------------------------------------------------------------------------
# Delivery
# ---------------------------------------------------------------------------

@runtime_checkable
class IMessageSink(Protocol):
    """Receives one composed message per call."""

    async def post(self, content: str) -> None: ...
