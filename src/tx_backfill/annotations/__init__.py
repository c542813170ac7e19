"""Relay annotations: per-relay connections and the quorum/timeout aggregator."""

from tx_backfill.annotations.aggregator import AnnotationAggregator
from tx_backfill.annotations.relay import (
    AnnotationBook,
    RelayConnection,
    correlation_key,
    extract_tx_ids,
)

__all__ = [
    "AnnotationAggregator",
    "AnnotationBook",
    "RelayConnection",
    "correlation_key",
    "extract_tx_ids",
]
