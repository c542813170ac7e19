"""Core domain models used across the backfill.

Every stage produces these types and hands them downstream unchanged.
Models are frozen: nothing is mutated after leaving its producing stage.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from datetime import datetime
from decimal import Decimal
from types import MappingProxyType

from pydantic import BaseModel, ConfigDict, Field, computed_field

from .enums import RunStatus, TransferKind


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


# ---------------------------------------------------------------------------
# Chain
# ---------------------------------------------------------------------------

class TransferEvent(_Frozen):
    """A normalized token Transfer log entry."""

    kind: TransferKind
    tx_id: str  # 0x-prefixed, lowercase
    counterparty_from: str
    counterparty_to: str
    amount: Decimal = Field(ge=0)  # decimals-normalized
    timestamp: datetime
    block_number: int = 0
    log_index: int = 0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def subject_address(self) -> str:
        """Address the event is about: the sender for a burn, else the recipient."""
        if self.kind == TransferKind.BURN:
            return self.counterparty_from
        return self.counterparty_to


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------

class IdentityCandidate(_Frozen):
    """One directory member, in directory order."""

    external_id: str
    display_name: str
    derivation_input: str


class ResolvedIdentity(_Frozen):
    chain_address: str  # lowercase canonical key
    external_id: str
    display_name: str


class IdentityMap(Mapping[str, ResolvedIdentity]):
    """Read-only address → identity mapping with case-insensitive lookup."""

    def __init__(self, identities: Mapping[str, ResolvedIdentity] | None = None) -> None:
        self._data = MappingProxyType(
            {addr.lower(): ident for addr, ident in (identities or {}).items()}
        )

    def __getitem__(self, address: str) -> ResolvedIdentity:
        return self._data[address.lower()]

    def __contains__(self, address: object) -> bool:
        return isinstance(address, str) and address.lower() in self._data

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"IdentityMap({dict(self._data)!r})"


# ---------------------------------------------------------------------------
# Annotations
# ---------------------------------------------------------------------------

class Annotation(_Frozen):
    tx_id: str
    content: str
    relay: str = ""


# ---------------------------------------------------------------------------
# Delivery
# ---------------------------------------------------------------------------

class ComposedMessage(_Frozen):
    ordinal: int  # position of the source event
    text: str


class DeliveryResult(_Frozen):
    ordinal: int
    success: bool
    error_detail: str | None = None
    status_code: int | None = None


class BackfillOutcome(_Frozen):
    """Summary of a single backfill run."""

    status: RunStatus
    events: tuple[TransferEvent, ...] = ()
    identities: dict[str, ResolvedIdentity] = Field(default_factory=dict)
    annotations: dict[str, str] = Field(default_factory=dict)
    messages: tuple[ComposedMessage, ...] = ()
    results: tuple[DeliveryResult, ...] = ()

    @property
    def delivered(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if not r.success)
