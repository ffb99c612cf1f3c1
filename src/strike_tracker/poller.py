"""
Incremental Strike log poller for one network.

Each tick fetches the chain head and scans at most one chunk of blocks past
the cursor. The cursor only moves after the whole chunk has been counted,
so a failed call leaves it where it was and the same range is retried.
"""

import time
import threading
import logging
from dataclasses import replace
from typing import Optional, List, Dict, Any, Callable

from .api_clients import (
    ChainRpcClient, TransientNetworkError, RateLimitError, ERROR_MESSAGE_LIMIT)
from .config import NetworkConfig
from .identity import IdentityResolver
from .ledger import ActivityLedger
from .models import Cursor, PollerState
from .utils import strike_topic, topic_to_address

logger = logging.getLogger(__name__)


class ChainPoller:
    """Advances one network's cursor toward the head and counts Strike events."""

    def __init__(self, network: NetworkConfig, ledger: ActivityLedger,
                 resolver: Optional[IdentityResolver] = None,
                 client_factory: Optional[Callable[[], Any]] = None,
                 clock: Callable[[], float] = time.time,
                 request_timeout: float = 10.0):
        self.network = network
        self.ledger = ledger
        self.resolver = resolver
        self.clock = clock
        self.topic0 = strike_topic()

        if client_factory is None:
            def client_factory():
                return ChainRpcClient(network, timeout=request_timeout)
        self.client_factory = client_factory
        self._client = None

        self.cursor = Cursor()
        self._cursor_lock = threading.Lock()
        self._tick_lock = threading.Lock()

    @property
    def name(self) -> str:
        return self.network.name

    def _get_client(self):
        if self._client is None:
            self._client = self.client_factory()
        return self._client

    def _update_cursor(self, **changes):
        with self._cursor_lock:
            for attr, value in changes.items():
                setattr(self.cursor, attr, value)

    def cursor_copy(self) -> Cursor:
        with self._cursor_lock:
            return replace(self.cursor)

    @property
    def state(self) -> PollerState:
        cursor = self.cursor_copy()
        if not cursor.seeded:
            return PollerState.UNINITIALIZED
        if cursor.cooldown_until is not None and self.clock() < cursor.cooldown_until:
            return PollerState.COOLING_DOWN
        if cursor.last_scanned_block < cursor.observed_head:
            return PollerState.CATCHING_UP
        return PollerState.IDLE

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    def tick(self) -> int:
        """
        Run one poll cycle. Returns the number of Strike logs counted.

        Overlapping calls for the same poller return 0 immediately.
        """
        if not self._tick_lock.acquire(blocking=False):
            logger.debug(f"[{self.name}] tick already in progress; skipping")
            return 0
        try:
            return self._tick()
        finally:
            self._tick_lock.release()

    def _tick(self) -> int:
        now = self.clock()
        cooldown_until = self.cursor.cooldown_until
        if cooldown_until is not None:
            if now < cooldown_until:
                return 0
            self._update_cursor(cooldown_until=None)

        try:
            head = self._get_client().get_block_height()
        except TransientNetworkError as e:
            self._record_failure("head fetch", e)
            return 0

        self._update_cursor(observed_head=head)

        if not self.cursor.seeded:
            start = max(0, head - self.network.lookback_window)
            self._update_cursor(
                last_scanned_block=start, seeded=True, healthy=True,
                last_error="", last_scan=f"init:{start}-{head}")
            logger.info(f"[{self.name}] cursor seeded at {start} (head {head})")
            return 0

        last = self.cursor.last_scanned_block
        if last > head:
            # Provider returned a head behind us (stale node or rollback)
            clamped = max(0, head - 1)
            logger.warning(
                f"[{self.name}] cursor {last} ahead of head {head}; clamping to {clamped}")
            self._update_cursor(last_scanned_block=clamped)
            last = clamped

        if last >= head:
            self._update_cursor(
                healthy=True, last_error="", last_scan=f"caught_up:{head}")
            return 0

        from_block = last + 1
        to_block = min(head, from_block + self.network.chunk_size - 1)
        if from_block > to_block:
            return 0

        try:
            logs = self._get_client().get_logs(
                self.network.contract_address, self.topic0, from_block, to_block)
        except TransientNetworkError as e:
            self._record_failure(f"getLogs {from_block}-{to_block}", e)
            return 0

        strikers = self._decode_strikers(logs)
        for address in strikers:
            self.ledger.increment(address)
        if self.resolver is not None and strikers:
            self.resolver.enqueue(strikers)

        self._update_cursor(
            last_scanned_block=to_block, healthy=True, last_error="",
            last_scan=f"{from_block}-{to_block} logs={len(strikers)}")
        if strikers:
            logger.info(
                f"[{self.name}] scanned {from_block}-{to_block}: {len(strikers)} strikes")
        return len(strikers)

    def _decode_strikers(self, logs: List[Dict[str, Any]]) -> List[str]:
        """Striker address of each log, in order, skipping duplicates and malformed logs."""
        strikers = []
        seen = set()
        for log in logs:
            topics = log.get("topics") or []
            if len(topics) < 2:
                continue

            tx_hash = log.get("transactionHash")
            log_index = log.get("logIndex")
            if tx_hash is not None and log_index is not None:
                log_id = (bytes(tx_hash) if isinstance(tx_hash, (bytes, bytearray))
                          else str(tx_hash).lower(), int(log_index))
                if log_id in seen:
                    continue
                seen.add(log_id)

            try:
                strikers.append(topic_to_address(topics[1]))
            except ValueError as e:
                logger.warning(
                    f"[{self.name}] skipping log in block {log.get('blockNumber')}: {e}")
        return strikers

    def _record_failure(self, action: str, error: TransientNetworkError):
        message = str(error)[:ERROR_MESSAGE_LIMIT]
        changes = {"healthy": False, "last_error": message}

        if isinstance(error, RateLimitError):
            backoff = self.network.rate_limit_backoff
            changes["cooldown_until"] = self.clock() + backoff
            logger.warning(
                f"[{self.name}] rate limited during {action}; backing off {backoff:.0f}s")
        else:
            logger.warning(f"[{self.name}] {action} failed: {message}")

        self._update_cursor(**changes)
        # Drop the client so the next attempt starts on a fresh connection
        self._client = None

    def run(self, stop_event: threading.Event):
        """Tick every poll_interval seconds until stop_event is set."""
        logger.info(
            f"[{self.name}] poller started (chunk {self.network.chunk_size}, "
            f"every {self.network.poll_interval}s)")
        while not stop_event.is_set():
            try:
                self.tick()
            except Exception as e:
                # Keep the network alive; the cycle is retried on the next tick
                logger.exception(f"[{self.name}] unexpected error in poll cycle")
                self._update_cursor(
                    healthy=False,
                    last_error=f"{type(e).__name__}: {e}"[:ERROR_MESSAGE_LIMIT])
                self._client = None
            stop_event.wait(self.network.poll_interval)
        logger.info(f"[{self.name}] poller stopped")
