"""On-chain event replay: JSON-RPC client, ABI helpers, EventSource."""

from tx_backfill.chain.event_source import EventSource, classify_transfer
from tx_backfill.chain.rpc import JsonRpcClient

__all__ = ["EventSource", "JsonRpcClient", "classify_transfer"]
