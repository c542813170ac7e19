"""Enumerations used across the backfill."""

from enum import Enum


class TransferKind(str, Enum):
    MINT = "mint"
    BURN = "burn"
    TRANSFER = "transfer"


class RelayState(str, Enum):
    """Lifecycle of a single relay connection."""

    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"
    DRAINING = "draining"  # at least one subscription finished replay
    CLOSED = "closed"


class RunStatus(str, Enum):
    NOTHING_TO_POST = "nothing_to_post"
    DRY_RUN = "dry_run"
    DECLINED = "declined"
    DELIVERED = "delivered"


class LogFormat(str, Enum):
    CONSOLE = "console"
    JSON = "json"
