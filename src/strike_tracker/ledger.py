"""
Per-network strike counts.
"""

import threading
from typing import Dict

from .utils import normalize_address


class ActivityLedger:
    """Address -> strike count for one network, safe to read from other threads."""

    def __init__(self, network: str):
        self.network = network
        self._counts: Dict[str, int] = {}
        self._lock = threading.Lock()

    def increment(self, address: str) -> int:
        """Add one strike for an address and return its new count."""
        address = normalize_address(address)
        with self._lock:
            count = self._counts.get(address, 0) + 1
            self._counts[address] = count
            return count

    def get(self, address: str) -> int:
        with self._lock:
            return self._counts.get(normalize_address(address), 0)

    def snapshot(self) -> Dict[str, int]:
        """Copy of the current counts."""
        with self._lock:
            return dict(self._counts)

    def __len__(self) -> int:
        with self._lock:
            return len(self._counts)
