"""Message composition and paced delivery to the Discord channel."""

from tx_backfill.delivery.composer import (
    LinkTemplate,
    compose_message,
    compose_messages,
    format_user,
    truncate_address,
)
from tx_backfill.delivery.pipeline import DeliveryPipeline
from tx_backfill.delivery.sink import DiscordChannelSink

__all__ = [
    "DeliveryPipeline",
    "DiscordChannelSink",
    "LinkTemplate",
    "compose_message",
    "compose_messages",
    "format_user",
    "truncate_address",
]
