"""
Wires pollers, ledgers and the identity resolver together and exposes the
read operations used by the CLI (and any HTTP layer put in front of it).
"""

import time
import threading
import logging
from typing import Optional, List, Dict, Callable, Any

from .api_clients import NeynarClient
from .config import Config, NetworkConfig
from .identity import IdentityResolver
from .leaderboard import LeaderboardAggregator
from .ledger import ActivityLedger
from .models import LeaderboardRow, Profile, CursorSnapshot
from .poller import ChainPoller
from .status import StatusReporter
from .utils import is_valid_ethereum_address, normalize_address

logger = logging.getLogger(__name__)


class UnknownNetworkError(ValueError):
    """Raised when a read names a network that is not being polled."""


class StrikeTracker:
    """Owns one poller and ledger per network plus the shared identity cache."""

    def __init__(self, config: Config,
                 chain_client_factory: Optional[Callable[[NetworkConfig], Any]] = None,
                 identity_client=None,
                 clock: Callable[[], float] = time.time):
        self.config = config

        if identity_client is None and config.identity_enabled:
            identity_client = NeynarClient(config)
        if identity_client is None:
            logger.warning(
                "NEYNAR_API_KEY not set; leaderboards will show wallets only")

        self.resolver = IdentityResolver(
            identity_client,
            batch_size=config.resolve_batch_size,
            retry_interval=config.resolve_retry_interval,
            rate_limit_backoff=config.resolve_rate_limit_backoff,
            clock=clock,
        )

        self.ledgers: Dict[str, ActivityLedger] = {}
        self.pollers: Dict[str, ChainPoller] = {}
        for name, network in config.networks.items():
            factory = None
            if chain_client_factory is not None:
                factory = self._bind_factory(chain_client_factory, network)
            ledger = ActivityLedger(name)
            self.ledgers[name] = ledger
            self.pollers[name] = ChainPoller(
                network, ledger, self.resolver,
                client_factory=factory,
                clock=clock,
                request_timeout=config.request_timeout,
            )

        self.aggregator = LeaderboardAggregator(self.resolver)
        self.status = StatusReporter(self.pollers, self.resolver)

        self._stop = threading.Event()
        self._threads: List[threading.Thread] = []

    @staticmethod
    def _bind_factory(factory, network: NetworkConfig):
        return lambda: factory(network)

    @property
    def networks(self) -> List[str]:
        return list(self.pollers)

    def _check_network(self, network: str):
        if network not in self.pollers:
            raise UnknownNetworkError(f"Unknown network: {network!r}")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self):
        """Start one polling thread per network and the identity worker."""
        if self._threads:
            return
        self._stop.clear()
        for name, poller in self.pollers.items():
            thread = threading.Thread(
                target=poller.run, args=(self._stop,),
                name=f"poller-{name}", daemon=True)
            thread.start()
            self._threads.append(thread)

        if self.resolver.enabled:
            thread = threading.Thread(
                target=self._run_resolver, name="identity-resolver", daemon=True)
            thread.start()
            self._threads.append(thread)

    def stop(self, timeout: float = 5.0):
        self._stop.set()
        for thread in self._threads:
            thread.join(timeout)
        self._threads = []

    def _run_resolver(self):
        while not self._stop.is_set():
            try:
                self.resolver.drain_pending()
            except Exception:
                logger.exception("Unexpected error while resolving identities")
            self._stop.wait(self.config.resolve_interval)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_leaderboard(self, network: str, limit: Optional[int] = None) -> List[LeaderboardRow]:
        """Ranked rows for a network, merged by identity where resolved."""
        self._check_network(network)
        if limit is None:
            limit = self.config.leaderboard_limit
        return self.aggregator.build(self.ledgers[network], limit=limit)

    def get_profile(self, address: str) -> Profile:
        """Strike counts for one wallet and its identity, if it resolves."""
        if not is_valid_ethereum_address(address):
            raise ValueError(f"Invalid address: {address!r}")
        address = normalize_address(address)

        resolved = self.resolver.resolve_by_addresses([address])
        return Profile(
            address=address,
            identity=resolved.get(address),
            strike_counts={name: ledger.get(address)
                           for name, ledger in self.ledgers.items()},
            wallets=[address],
        )

    def get_profile_by_social_id(self, social_id: int) -> Profile:
        """Strike counts summed over every wallet linked to an fid."""
        if social_id <= 0:
            raise ValueError(f"Invalid social id: {social_id!r}")

        identity = self.resolver.resolve_by_social_id(social_id)
        wallets = sorted(identity.linked_addresses) if identity else []
        counts = {
            name: sum(ledger.get(w) for w in wallets)
            for name, ledger in self.ledgers.items()
        }
        return Profile(
            social_id=social_id,
            identity=identity,
            strike_counts=counts,
            wallets=wallets,
        )

    def get_status(self, network: str) -> CursorSnapshot:
        self._check_network(network)
        return self.status.get_status(network)

    def health(self) -> Dict[str, Any]:
        return self.status.health()
