"""
Operational snapshots of poller state.
"""

from typing import Optional, Dict, Any, List

from .identity import IdentityResolver
from .models import CursorSnapshot, PollerState
from .poller import ChainPoller


class StatusReporter:
    """Read-only view over the pollers and identity queue."""

    def __init__(self, pollers: Dict[str, ChainPoller],
                 resolver: Optional[IdentityResolver] = None):
        self.pollers = pollers
        self.resolver = resolver

    def get_status(self, network: str) -> CursorSnapshot:
        poller = self.pollers[network]
        cursor = poller.cursor_copy()
        return CursorSnapshot(
            network=network,
            state=poller.state,
            contract_address=poller.network.contract_address,
            last_scanned_block=cursor.last_scanned_block,
            observed_head=cursor.observed_head,
            healthy=cursor.healthy,
            last_error=cursor.last_error,
            last_scan=cursor.last_scan,
            cooldown_until=cursor.cooldown_until,
            players=len(poller.ledger),
        )

    def all_statuses(self) -> List[CursorSnapshot]:
        return [self.get_status(name) for name in self.pollers]

    def health(self) -> Dict[str, Any]:
        statuses = self.all_statuses()
        ok = all(s.healthy and s.state != PollerState.COOLING_DOWN for s in statuses)
        return {
            "status": "ok" if ok else "degraded",
            "networks": {s.network: s.to_dict() for s in statuses},
            "identity_enabled": bool(self.resolver and self.resolver.enabled),
            "pending_identities": self.resolver.pending_count if self.resolver else 0,
            "identity_cooldown_until": (
                self.resolver.cooldown_until
                if self.resolver and self.resolver.cooling_down else None),
        }
