"""Address → identity resolution over the member directory.

Resolution is best-effort: each candidate's wallet is derived in
directory order and matched against the batch's subject addresses.
The scan stops as soon as every target address has an identity.
Unresolved addresses are not an error.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from contextlib import aclosing

from tx_backfill.core.errors import IdentityLookupError
from tx_backfill.core.interfaces import IAddressDeriver, IMemberDirectory
from tx_backfill.core.models import IdentityCandidate, IdentityMap, ResolvedIdentity

logger = logging.getLogger(__name__)


class ResolutionScan:
    """Progress of one resolution pass.

    Holds the target address set and the identities found so far. The
    first identity recorded for an address is never replaced.
    """

    def __init__(self, targets: Iterable[str]) -> None:
        self._targets = frozenset(addr.lower() for addr in targets)
        self._resolved: dict[str, ResolvedIdentity] = {}

    @property
    def targets(self) -> frozenset[str]:
        return self._targets

    @property
    def resolved_count(self) -> int:
        return len(self._resolved)

    @property
    def is_complete(self) -> bool:
        """True once every target address is resolved."""
        return len(self._resolved) >= len(self._targets)

    def offer(
        self, candidate: IdentityCandidate, derived_address: str
    ) -> ResolvedIdentity | None:
        """Record ``candidate`` if its address is a pending target."""
        address = derived_address.lower()
        if address not in self._targets or address in self._resolved:
            return None
        identity = ResolvedIdentity(
            chain_address=address,
            external_id=candidate.external_id,
            display_name=candidate.display_name,
        )
        self._resolved[address] = identity
        return identity

    def result(self) -> IdentityMap:
        return IdentityMap(self._resolved)


class IdentityResolver:
    """Maps chain addresses to directory members via wallet derivation."""

    def __init__(self, directory: IMemberDirectory, deriver: IAddressDeriver) -> None:
        self._directory = directory
        self._deriver = deriver

    async def resolve(self, addresses: Iterable[str]) -> IdentityMap:
        scan = ResolutionScan(addresses)
        if scan.is_complete:
            return scan.result()

        checked = 0
        async with aclosing(self._directory.iter_candidates()) as candidates:
            async for candidate in candidates:
                checked += 1
                try:
                    derived = await self._deriver.derive(candidate.derivation_input)
                except IdentityLookupError as exc:
                    logger.debug("Skipping candidate %s: %s", candidate.external_id, exc)
                    continue

                identity = scan.offer(candidate, derived)
                if identity is None:
                    continue
                logger.info(
                    "Resolved %s… → @%s",
                    identity.chain_address[:10], identity.display_name,
                )
                if scan.is_complete:
                    break

        logger.info(
            "Resolved %d/%d addresses after checking %d candidates",
            scan.resolved_count, len(scan.targets), checked,
        )
        return scan.result()
