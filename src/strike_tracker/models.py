"""
Data models for strike tracking and identity resolution.
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Optional, List, Dict, Set, Any


class PollerState(str, Enum):
    """Lifecycle of a network poller."""
    UNINITIALIZED = "uninitialized"
    CATCHING_UP = "catching_up"
    IDLE = "idle"
    COOLING_DOWN = "cooling_down"


@dataclass
class Cursor:
    """Scan position and health of one network's poller."""
    last_scanned_block: int = 0
    observed_head: int = 0
    seeded: bool = False
    healthy: bool = False
    last_error: str = ""
    last_scan: str = ""
    cooldown_until: Optional[float] = None  # unix timestamp


@dataclass
class IdentityRecord:
    """A social identity and the wallets linked to it."""
    social_id: Optional[int]
    handle: str = ""
    display_name: str = ""
    avatar_url: str = ""
    primary_wallet_address: Optional[str] = None
    linked_addresses: Set[str] = field(default_factory=set)
    bio: str = ""
    profile_url: Optional[str] = None

    @property
    def key(self) -> Optional[str]:
        """Stable merge key, or None when the record cannot be keyed."""
        if self.social_id is not None:
            return f"fid:{self.social_id}"
        if self.handle:
            return f"handle:{self.handle.lower()}"
        return None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["linked_addresses"] = sorted(self.linked_addresses)
        return data


@dataclass
class LeaderboardRow:
    """One ranked row: either a merged identity or a standalone wallet."""
    key: str
    total: int
    rank: int = 0
    social_id: Optional[int] = None
    handle: Optional[str] = None
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    address: Optional[str] = None  # only set for unresolved wallets
    wallet_count: int = 1

    @property
    def is_identity(self) -> bool:
        return self.address is None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CursorSnapshot:
    """Read-only view of a poller for status reporting."""
    network: str
    state: PollerState
    contract_address: str
    last_scanned_block: int
    observed_head: int
    healthy: bool
    last_error: str
    last_scan: str
    cooldown_until: Optional[float]
    players: int

    @property
    def lag(self) -> int:
        return max(0, self.observed_head - self.last_scanned_block)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        return data


@dataclass
class Profile:
    """Identity plus per-network strike counts for one wallet or fid."""
    strike_counts: Dict[str, int]
    identity: Optional[IdentityRecord] = None
    address: Optional[str] = None
    social_id: Optional[int] = None
    wallets: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return sum(self.strike_counts.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "social_id": self.social_id,
            "strike_counts": dict(self.strike_counts),
            "identity": self.identity.to_dict() if self.identity else None,
            "wallets": list(self.wallets),
            "wallet_count": len(self.wallets),
        }
