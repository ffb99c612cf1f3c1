"""
Address -> social identity resolution.

Two lookups with different trust levels share one cache:

* ``resolve_by_addresses`` asks which identities claim each address. The
  underlying social graph lets several users verify the same wallet, so an
  address is linked only when exactly one identity comes back. Zero or many
  candidates leave it unresolved and it stays eligible for a later retry.
* ``resolve_by_social_id`` fetches one identity by fid. Its wallet list is
  authoritative and re-points any address that was linked elsewhere.

An address is linked to at most one identity at a time.
"""

import time
import threading
import logging
from dataclasses import replace
from typing import Optional, List, Dict, Iterable, Callable, Tuple, Set

from .api_clients import TransientNetworkError, RateLimitError
from .models import IdentityRecord
from .utils import unique_lower, is_valid_ethereum_address, chunk_list, normalize_address

logger = logging.getLogger(__name__)

# Custody addresses are tried first; verified addresses only fill the gaps
ADDRESS_TYPES = ("custody_address", "verified_address")


def _copy_record(record: IdentityRecord) -> IdentityRecord:
    return replace(record, linked_addresses=set(record.linked_addresses))


class IdentityResolver:
    """Caches identity lookups and tracks addresses still waiting for one."""

    def __init__(self, client=None, batch_size: int = 100,
                 retry_interval: float = 120.0,
                 rate_limit_backoff: float = 60.0,
                 clock: Callable[[], float] = time.time):
        self.client = client
        self.batch_size = batch_size
        self.retry_interval = retry_interval
        self.rate_limit_backoff = rate_limit_backoff
        self.clock = clock
        self.cooldown_until: Optional[float] = None

        self._identities: Dict[str, IdentityRecord] = {}
        self._address_index: Dict[str, str] = {}
        self._pending: Set[str] = set()
        self._last_attempt: Dict[str, float] = {}
        self._lock = threading.RLock()

    @property
    def enabled(self) -> bool:
        return self.client is not None

    @property
    def cooling_down(self) -> bool:
        """True while a rate-limit response holds off remote lookups."""
        cooldown_until = self.cooldown_until
        return cooldown_until is not None and self.clock() < cooldown_until

    def _start_cooldown(self, error: RateLimitError):
        self.cooldown_until = self.clock() + self.rate_limit_backoff
        logger.warning(
            f"Identity lookups rate limited; backing off {self.rate_limit_backoff:.0f}s: {error}")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def is_resolved(self, address: str) -> bool:
        with self._lock:
            return normalize_address(address) in self._address_index

    def lookup(self, address: str) -> Optional[IdentityRecord]:
        """Cached identity for an address, if any."""
        with self._lock:
            key = self._address_index.get(normalize_address(address))
            if key is None:
                return None
            return _copy_record(self._identities[key])

    def get_identity(self, social_id: int) -> Optional[IdentityRecord]:
        with self._lock:
            record = self._identities.get(f"fid:{social_id}")
            return _copy_record(record) if record else None

    def snapshot(self) -> Tuple[Dict[str, str], Dict[str, IdentityRecord]]:
        """Consistent copy of (address -> identity key, identity key -> record)."""
        with self._lock:
            index = dict(self._address_index)
            identities = {k: _copy_record(r)
                          for k, r in self._identities.items()}
        return index, identities

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    # ------------------------------------------------------------------
    # Queue
    # ------------------------------------------------------------------

    def enqueue(self, addresses: Iterable[str]) -> int:
        """Queue unresolved addresses for lookup. Returns how many were added."""
        added = 0
        with self._lock:
            for address in unique_lower(addresses):
                if address in self._address_index or address in self._pending:
                    continue
                self._pending.add(address)
                added += 1
        return added

    def drain_pending(self) -> int:
        """Resolve one batch of queued addresses that are due for an attempt."""
        if not self.enabled or self.cooling_down:
            return 0

        now = self.clock()
        with self._lock:
            due = [
                a for a in self._pending
                if a not in self._last_attempt
                or now - self._last_attempt[a] >= self.retry_interval
            ]
            # Never-attempted first, then the longest-waiting
            due.sort(key=lambda a: (self._last_attempt.get(a, float("-inf")), a))
            due = due[:self.batch_size]

        if not due:
            return 0

        resolved = self.resolve_by_addresses(due)
        logger.info(
            f"Resolved {len(resolved)} of {len(due)} queued addresses "
            f"({self.pending_count} still pending)")
        return len(resolved)

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve_by_addresses(self, addresses: Iterable[str]) -> Dict[str, IdentityRecord]:
        """
        Resolve addresses to identities, returning only the unambiguous ones.

        Already-cached addresses are answered from the cache. A failed batch
        is logged and left unresolved; remaining batches still run. A rate
        limit stops the remaining batches and holds off remote lookups for
        rate_limit_backoff seconds.
        """
        wanted = [a for a in unique_lower(addresses)
                  if is_valid_ethereum_address(a)]

        resolved: Dict[str, IdentityRecord] = {}
        for address in wanted:
            record = self.lookup(address)
            if record is not None:
                resolved[address] = record

        todo = [a for a in wanted if a not in resolved]
        if not todo or not self.enabled or self.cooling_down:
            return resolved

        for batch in chunk_list(todo, self.batch_size):
            now = self.clock()
            with self._lock:
                for address in batch:
                    self._last_attempt[address] = now
            limited = False
            try:
                self._resolve_batch(batch)
            except RateLimitError as e:
                self._start_cooldown(e)
                limited = True
            except TransientNetworkError as e:
                logger.warning(
                    f"Identity lookup failed for batch of {len(batch)}: {e}")

            for address in batch:
                record = self.lookup(address)
                if record is not None:
                    resolved[address] = record
            if limited:
                break

        return resolved

    def _resolve_batch(self, batch: List[str]):
        missing = list(batch)
        ambiguous: Set[str] = set()

        for address_type in ADDRESS_TYPES:
            if not missing:
                break
            candidates = self.client.resolve_addresses(
                missing, address_type=address_type)

            for address in missing:
                users = [u for u in candidates.get(address) or []
                         if u.key is not None]
                keys = {u.key for u in users}
                if len(keys) == 1:
                    self._link(address, users[0])
                elif len(keys) > 1:
                    logger.info(
                        f"{address} matches {len(keys)} identities by {address_type}; leaving unresolved")
                    ambiguous.add(address)

            missing = [a for a in missing
                       if a not in ambiguous and not self.is_resolved(a)]

    def resolve_by_social_id(self, social_id: int) -> Optional[IdentityRecord]:
        """Fetch an identity by fid and link every wallet it lists."""
        cached = self.get_identity(social_id)
        if not self.enabled or self.cooling_down:
            return cached

        try:
            record = self.client.resolve_social_id(social_id)
        except RateLimitError as e:
            self._start_cooldown(e)
            return cached
        except TransientNetworkError as e:
            logger.warning(f"Identity lookup failed for fid {social_id}: {e}")
            return cached

        if record is None or record.key is None:
            return cached

        with self._lock:
            self._store(record)
            for address in unique_lower(record.linked_addresses):
                self._link(address, record, authoritative=True)

        return self.get_identity(social_id) if record.social_id is not None else record

    def _store(self, record: IdentityRecord) -> IdentityRecord:
        """Insert or refresh the profile fields of a cached identity."""
        cached = self._identities.get(record.key)
        if cached is None:
            cached = replace(record, linked_addresses=set())
            self._identities[record.key] = cached
        else:
            cached.handle = record.handle or cached.handle
            cached.display_name = record.display_name or cached.display_name
            cached.avatar_url = record.avatar_url or cached.avatar_url
            cached.bio = record.bio or cached.bio
            cached.profile_url = record.profile_url or cached.profile_url
            cached.primary_wallet_address = (
                record.primary_wallet_address or cached.primary_wallet_address)
        return cached

    def _link(self, address: str, record: IdentityRecord,
              authoritative: bool = False) -> bool:
        key = record.key
        if key is None:
            return False

        with self._lock:
            current = self._address_index.get(address)
            if current is not None and current != key:
                if not authoritative:
                    logger.info(
                        f"{address} already linked to {current}; not moving it to {key}")
                    return False
                previous = self._identities.get(current)
                if previous is not None:
                    previous.linked_addresses.discard(address)

            cached = self._store(record)
            cached.linked_addresses.add(address)
            self._address_index[address] = key
            self._pending.discard(address)
            self._last_attempt.pop(address, None)
        return True
