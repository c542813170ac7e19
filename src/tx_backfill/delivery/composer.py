"""Turn transfer events into Discord message text.

Pure functions, no I/O. One message per event, in event order.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from decimal import Decimal
from typing import NamedTuple

from tx_backfill.core.enums import TransferKind
from tx_backfill.core.models import ComposedMessage, ResolvedIdentity, TransferEvent


class KindStyle(NamedTuple):
    emoji: str
    verb: str
    preposition: str


KIND_STYLES: dict[TransferKind, KindStyle] = {
    TransferKind.MINT: KindStyle("🪙", "Minted", "for"),
    TransferKind.BURN: KindStyle("🔥", "Burned", "from"),
    TransferKind.TRANSFER: KindStyle("💸", "Transferred", "to"),
}

ANNOTATION_PREFIX = "📝"


class LinkTemplate(NamedTuple):
    """Token display and link targets shared by every message."""

    symbol: str
    token_url: str
    tx_url_base: str  # tx id is appended after "/"

    def tx_url(self, tx_id: str) -> str:
        return f"{self.tx_url_base.rstrip('/')}/{tx_id}"


def truncate_address(address: str) -> str:
    """``0x1234…abcd``: first 6 chars, ellipsis, last 4."""
    return f"{address[:6]}…{address[-4:]}"


def format_user(address: str, identities: Mapping[str, ResolvedIdentity]) -> str:
    """Mention for a resolved address, inline-code short address otherwise."""
    identity = identities.get(address.lower())
    if identity is not None:
        return f"<@{identity.external_id}>"
    return f"`{truncate_address(address)}`"


def format_amount(amount: Decimal) -> str:
    """Plain decimal notation without trailing zeros (``100``, ``0.5``)."""
    text = format(amount, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"


def compose_message(
    event: TransferEvent,
    identities: Mapping[str, ResolvedIdentity],
    links: LinkTemplate,
    annotation: str | None = None,
) -> str:
    style = KIND_STYLES[event.kind]
    user = format_user(event.subject_address, identities)
    text = (
        f"{style.emoji} {style.verb} {format_amount(event.amount)} "
        f"[{links.symbol}](<{links.token_url}>) {style.preposition} {user} "
        f"[[tx]](<{links.tx_url(event.tx_id)}>)"
    )
    if annotation:
        text += f"\n{ANNOTATION_PREFIX} {annotation}"
    return text


def compose_messages(
    events: Sequence[TransferEvent],
    identities: Mapping[str, ResolvedIdentity],
    annotations: Mapping[str, str],
    links: LinkTemplate,
) -> tuple[ComposedMessage, ...]:
    """Compose every event; ordinal is the event's input position."""
    return tuple(
        ComposedMessage(
            ordinal=i,
            text=compose_message(event, identities, links, annotations.get(event.tx_id)),
        )
        for i, event in enumerate(events)
    )
