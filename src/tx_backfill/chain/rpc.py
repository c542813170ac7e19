"""Read-only JSON-RPC client for an EVM chain.

Speaks plain JSON-RPC 2.0 over HTTP with retry on transient failures
(network errors, 429, 5xx) using exponential backoff with jitter.

Usage::

    async with JsonRpcClient("https://forno.celo.org") as rpc:
        receipt = await rpc.get_transaction_receipt(tx_hash)
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import random
from collections.abc import Sequence
from typing import Any

import httpx

from tx_backfill.core.errors import RpcError

logger = logging.getLogger(__name__)


def _to_hex(number: int) -> str:
    return hex(number)


def hex_to_int(value: str | int | None) -> int:
    """Decode a JSON-RPC quantity (``"0x1a"``) to an int."""
    if value is None:
        return 0
    if isinstance(value, int):
        return value
    return int(value, 16)


class JsonRpcClient:
    """Minimal async JSON-RPC client.

    Parameters
    ----------
    url:
        RPC endpoint.
    timeout:
        HTTP request timeout in seconds.
    max_retries:
        Maximum attempts for transient errors.
    base_backoff:
        Base backoff duration in seconds for retries.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 30.0,
        max_retries: int = 3,
        base_backoff: float = 1.0,
    ) -> None:
        self._url = url
        self._timeout = timeout
        self._max_retries = max(1, max_retries)
        self._base_backoff = base_backoff
        self._ids = itertools.count(1)
        self._client: httpx.AsyncClient | None = None

    # -- Lifecycle -----------------------------------------------------------

    async def open(self) -> None:
        """Create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout))

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> JsonRpcClient:
        await self.open()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # -- Methods -------------------------------------------------------------

    async def get_transaction_receipt(self, tx_hash: str) -> dict[str, Any] | None:
        return await self.request("eth_getTransactionReceipt", [tx_hash])

    async def get_logs(
        self,
        address: str,
        topics: Sequence[str | None],
        from_block: int,
        to_block: int | str = "latest",
    ) -> list[dict[str, Any]]:
        params = {
            "address": address,
            "topics": list(topics),
            "fromBlock": _to_hex(from_block),
            "toBlock": to_block if isinstance(to_block, str) else _to_hex(to_block),
        }
        return await self.request("eth_getLogs", [params]) or []

    async def get_block(self, number: int) -> dict[str, Any]:
        block = await self.request("eth_getBlockByNumber", [_to_hex(number), False])
        if block is None:
            raise RpcError("eth_getBlockByNumber", f"block {number} not found")
        return block

    async def call(self, to: str, data: str) -> str:
        return await self.request("eth_call", [{"to": to, "data": data}, "latest"])

    # -- Transport -----------------------------------------------------------

    async def request(self, method: str, params: list[Any]) -> Any:
        """Execute a JSON-RPC call and return its ``result``.

        Retries on:
        - transport errors (network, timeout, protocol)
        - 429 rate limit responses
        - 5xx server errors

        Raises ``RpcError`` on JSON-RPC error objects, non-retryable
        HTTP errors, or once retries are exhausted.
        """
        if self._client is None:
            raise RuntimeError("Client not opened. Use 'async with' or call open().")

        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        }

        for attempt in range(1, self._max_retries + 1):
            try:
                resp = await self._client.post(self._url, json=payload)
            except httpx.TransportError as exc:
                if attempt == self._max_retries:
                    raise RpcError(
                        method, f"max retries ({self._max_retries}) exhausted: {exc}"
                    ) from exc
                wait = self._backoff_delay(attempt)
                logger.warning(
                    "RPC %s network error (attempt %d/%d), retrying in %.1fs: %s",
                    method, attempt, self._max_retries, wait, exc,
                )
                await asyncio.sleep(wait)
                continue

            if resp.status_code == 429 or resp.status_code >= 500:
                if attempt == self._max_retries:
                    raise RpcError(
                        method,
                        f"max retries ({self._max_retries}) exhausted: "
                        f"HTTP {resp.status_code}",
                    )
                wait = self._backoff_delay(attempt)
                logger.warning(
                    "RPC %s HTTP %d (attempt %d/%d), retrying in %.1fs",
                    method, resp.status_code, attempt, self._max_retries, wait,
                )
                await asyncio.sleep(wait)
                continue

            if resp.status_code != 200:
                raise RpcError(method, f"HTTP {resp.status_code}: {resp.text}")

            try:
                body = resp.json()
            except ValueError as exc:
                raise RpcError(method, f"invalid JSON response: {exc}") from exc
            if not isinstance(body, dict):
                raise RpcError(method, f"unexpected response: {body!r}")
            if body.get("error"):
                err = body["error"]
                raise RpcError(method, f"{err.get('code')}: {err.get('message')}")
            return body.get("result")

        # Should not reach here, but safety net
        raise RpcError(method, f"max retries ({self._max_retries}) exhausted")

    def _backoff_delay(self, attempt: int) -> float:
        """Exponential backoff with jitter."""
        base = self._base_backoff * (2 ** (attempt - 1))
        return base + random.uniform(0, base * 0.5)
