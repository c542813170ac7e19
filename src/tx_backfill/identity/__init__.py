"""Identity resolution: member directory, wallet derivation, resolver."""

from tx_backfill.identity.directory import DiscordMemberDirectory, candidate_from_member
from tx_backfill.identity.resolver import IdentityResolver, ResolutionScan
from tx_backfill.identity.wallets import CardAddressDeriver

__all__ = [
    "CardAddressDeriver",
    "DiscordMemberDirectory",
    "IdentityResolver",
    "ResolutionScan",
    "candidate_from_member",
]
