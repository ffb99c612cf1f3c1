import os
from dataclasses import dataclass, field
from typing import Optional, Dict
from dotenv import load_dotenv

from .utils import is_valid_ethereum_address, normalize_address

# Load environment variables from .env file
load_dotenv()


def _api_key(value: Optional[str]) -> Optional[str]:
    """Treat blanks and the .env template placeholder as unset."""
    if not value or not value.strip() or value.lower().startswith("your_"):
        return None
    return value.strip()


@dataclass
class NetworkConfig:
    """Polling settings for one monitored network."""

    name: str
    rpc_url: str
    contract_address: str

    # Largest block range the provider accepts in one eth_getLogs call
    chunk_size: int = 800
    poll_interval: float = 6.0  # seconds between ticks
    lookback_window: int = 2000
    rate_limit_backoff: float = 20.0  # seconds

    def __post_init__(self):
        if not is_valid_ethereum_address(self.contract_address):
            raise ValueError(
                f"Invalid contract address for {self.name}: {self.contract_address!r}")
        self.contract_address = normalize_address(self.contract_address)
        if self.chunk_size <= 0:
            raise ValueError(
                f"Chunk size for {self.name} must be positive, got {self.chunk_size}")
        if self.lookback_window < 0:
            raise ValueError(
                f"Lookback window for {self.name} must not be negative")

    @classmethod
    def from_env(cls, name: str, default_rpc: str, default_contract: str,
                 **defaults) -> "NetworkConfig":
        """Create a network config from <NAME>_* environment variables."""
        prefix = name.upper()
        return cls(
            name=name,
            rpc_url=os.getenv(f"{prefix}_RPC", default_rpc),
            contract_address=os.getenv(
                f"{prefix}_CONTRACT", default_contract),
            chunk_size=int(os.getenv(
                f"{prefix}_CHUNK_SIZE", str(defaults.get("chunk_size", 800)))),
            poll_interval=float(os.getenv(
                f"{prefix}_POLL_INTERVAL", str(defaults.get("poll_interval", 6.0)))),
            lookback_window=int(os.getenv(
                f"{prefix}_LOOKBACK", str(defaults.get("lookback_window", 2000)))),
            rate_limit_backoff=float(os.getenv(
                f"{prefix}_RATE_LIMIT_BACKOFF", str(defaults.get("rate_limit_backoff", 20.0)))),
        )


@dataclass
class Config:
    """Application configuration."""

    networks: Dict[str, NetworkConfig] = field(default_factory=dict)

    # API Keys
    neynar_api_key: Optional[str] = None

    # API URLs
    neynar_base_url: str = "https://api.neynar.com/v2/farcaster"

    # Remote call settings
    request_timeout: float = 10.0  # seconds

    # Identity resolution settings
    resolve_batch_size: int = 100
    resolve_interval: float = 15.0  # seconds between queue drains
    resolve_retry_interval: float = 120.0  # min seconds between retries of one address
    resolve_rate_limit_backoff: float = 60.0  # seconds to hold off after a Neynar 429

    # Output settings
    leaderboard_limit: int = 50

    def __post_init__(self):
        if self.resolve_batch_size <= 0:
            raise ValueError(
                f"Resolve batch size must be positive, got {self.resolve_batch_size}")
        if self.leaderboard_limit <= 0:
            raise ValueError(
                f"Leaderboard limit must be positive, got {self.leaderboard_limit}")
        if self.resolve_rate_limit_backoff < 0:
            raise ValueError("Resolve rate limit backoff must not be negative")

    @property
    def identity_enabled(self) -> bool:
        return bool(self.neynar_api_key)

    @classmethod
    def from_env(cls) -> "Config":
        """Create config from environment variables."""
        networks = {
            "base": NetworkConfig.from_env(
                "base",
                default_rpc="https://mainnet.base.org",
                default_contract="0xB2B23e69b9d811D3D43AD473f90A171D18b19aab",
                chunk_size=800,
                poll_interval=6.0,
            ),
            # HyperEVM's public RPC enforces a much stricter rate limit
            "hyperevm": NetworkConfig.from_env(
                "hyperevm",
                default_rpc="https://rpc.hyperliquid.xyz/evm",
                default_contract="0x044A0B2D6eF67F5B82e51ec7229D84C0e83C8f02",
                chunk_size=400,
                poll_interval=14.0,
                rate_limit_backoff=60.0,
            ),
        }

        return cls(
            networks=networks,
            neynar_api_key=_api_key(os.getenv("NEYNAR_API_KEY")),
            neynar_base_url=os.getenv(
                "NEYNAR_BASE_URL", "https://api.neynar.com/v2/farcaster"),
            request_timeout=float(os.getenv("REQUEST_TIMEOUT", "10")),
            resolve_batch_size=int(os.getenv("RESOLVE_BATCH_SIZE", "100")),
            resolve_interval=float(os.getenv("RESOLVE_INTERVAL", "15")),
            resolve_retry_interval=float(
                os.getenv("RESOLVE_RETRY_INTERVAL", "120")),
            resolve_rate_limit_backoff=float(
                os.getenv("RESOLVE_RATE_LIMIT_BACKOFF", "60")),
            leaderboard_limit=int(os.getenv("LEADERBOARD_LIMIT", "50")),
        )
