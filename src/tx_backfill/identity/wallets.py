"""Card wallet address derivation.

A member's wallet is owned by the card-manager contract: its address is
``getCardAddress(keccak256(instance_id), keccak256(user_id))``. The
lookup is an ``eth_call``, not computed locally.
"""

from __future__ import annotations

from tx_backfill.chain.abi import (
    GET_CARD_ADDRESS_SIGNATURE,
    decode_address,
    encode_call,
    keccak256,
)
from tx_backfill.core.errors import IdentityLookupError, RpcError
from tx_backfill.core.interfaces import IChainClient


class CardAddressDeriver:
    def __init__(
        self,
        client: IChainClient,
        card_manager_address: str,
        instance_id: str,
    ) -> None:
        self._client = client
        self._card_manager = card_manager_address
        self._hashed_instance_id = keccak256(instance_id)

    async def derive(self, derivation_input: str) -> str:
        """Return the lowercased card address for a member id."""
        data = encode_call(
            GET_CARD_ADDRESS_SIGNATURE,
            self._hashed_instance_id,
            keccak256(derivation_input),
        )
        try:
            result = await self._client.call(self._card_manager, data)
            return decode_address(result or "0x")
        except (RpcError, ValueError) as exc:
            raise IdentityLookupError(
                f"getCardAddress failed for {derivation_input}: {exc}"
            ) from exc
