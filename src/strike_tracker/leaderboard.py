"""
Ranked leaderboard with wallets merged by resolved identity.
"""

import logging
from typing import Optional, List, Dict

from .identity import IdentityResolver
from .ledger import ActivityLedger
from .models import LeaderboardRow

logger = logging.getLogger(__name__)


def assign_dense_ranks(rows: List[LeaderboardRow]) -> List[LeaderboardRow]:
    """Sort rows by total (desc) then key (asc) and give equal totals equal ranks."""
    rows.sort(key=lambda r: (-r.total, r.key))
    rank = 0
    previous = None
    for row in rows:
        if row.total != previous:
            rank += 1
            previous = row.total
        row.rank = rank
    return rows


class LeaderboardAggregator:
    """Builds a fresh ranking from a ledger and the identity cache on every call."""

    def __init__(self, resolver: Optional[IdentityResolver] = None):
        self.resolver = resolver

    def build(self, ledger: ActivityLedger, limit: Optional[int] = None) -> List[LeaderboardRow]:
        counts = ledger.snapshot()
        rows = self.merge(counts)
        ranked = assign_dense_ranks(rows)
        if limit is not None:
            ranked = ranked[:limit]
        return ranked

    def merge(self, counts: Dict[str, int]) -> List[LeaderboardRow]:
        """One row per resolved identity plus one per unresolved address."""
        if self.resolver is not None:
            index, identities = self.resolver.snapshot()
        else:
            index, identities = {}, {}

        merged: Dict[str, LeaderboardRow] = {}
        rows: List[LeaderboardRow] = []

        for address, count in counts.items():
            key = index.get(address)
            record = identities.get(key) if key else None
            if record is None:
                rows.append(LeaderboardRow(
                    key=address, total=count, address=address))
                continue
            if key in merged:
                continue

            # Credit every wallet the identity owns, not just the ones seen here
            wallets = set(record.linked_addresses)
            wallets.add(address)
            active = [w for w in wallets if counts.get(w, 0) > 0]

            row = LeaderboardRow(
                key=key,
                total=sum(counts[w] for w in active),
                social_id=record.social_id,
                handle=record.handle,
                display_name=record.display_name,
                avatar_url=record.avatar_url,
                wallet_count=len(active),
            )
            merged[key] = row
            rows.append(row)

        logger.debug(
            f"Merged {len(counts)} wallets into {len(rows)} leaderboard rows")
        return rows
