import logging
from typing import Optional, List, Dict, Any
import requests
from web3 import Web3

from .config import Config, NetworkConfig
from .models import IdentityRecord
from .utils import is_rate_limit_error, normalize_address, unique_lower

# Set up logging
logger = logging.getLogger(__name__)

ERROR_MESSAGE_LIMIT = 300


class TransientNetworkError(Exception):
    """A remote call failed or timed out; retry on a later cycle."""


class RateLimitError(TransientNetworkError):
    """The remote asked us to slow down; back off before retrying."""


class IdentityServiceError(TransientNetworkError):
    """The identity API failed or returned an unusable response."""


class IdentityRateLimitError(IdentityServiceError, RateLimitError):
    """The identity API rate-limited the request."""


def _truncate(message: str) -> str:
    return message[:ERROR_MESSAGE_LIMIT]


class ChainRpcClient:
    """Client for the per-network JSON-RPC endpoint."""

    def __init__(self, network: NetworkConfig, timeout: float = 10.0):
        self.network = network
        self.w3 = Web3(Web3.HTTPProvider(
            network.rpc_url, request_kwargs={"timeout": timeout}))

    def _wrap(self, error: Exception) -> TransientNetworkError:
        message = _truncate(f"{type(error).__name__}: {error}")
        if is_rate_limit_error(error):
            return RateLimitError(message)
        return TransientNetworkError(message)

    def get_block_height(self) -> int:
        """Get the current block number."""
        try:
            return int(self.w3.eth.block_number)
        except Exception as e:
            raise self._wrap(e) from e

    def get_logs(self, contract_address: str, topic0: str, from_block: int,
                 to_block: int) -> List[Dict[str, Any]]:
        """Get logs emitted by a contract for one topic in [from_block, to_block]."""
        params = {
            "address": Web3.to_checksum_address(contract_address),
            "topics": [topic0],
            "fromBlock": from_block,
            "toBlock": to_block,
        }
        try:
            return list(self.w3.eth.get_logs(params))
        except Exception as e:
            raise self._wrap(e) from e


def user_to_identity(user: Optional[Dict[str, Any]]) -> Optional[IdentityRecord]:
    """Convert a Neynar user object into an IdentityRecord."""
    if not user:
        return None

    handle = user.get("username") or ""
    display_name = user.get("display_name") or user.get("displayName") or handle
    avatar_url = user.get("pfp_url") or user.get("pfpUrl") or ""

    profile = user.get("profile") or {}
    bio = profile.get("bio") if isinstance(profile, dict) else ""
    if isinstance(bio, dict):
        bio = bio.get("text") or ""
    bio = bio or user.get("bio") or ""

    custody = user.get("custody_address") or ""
    verifications = list(user.get("verifications") or [])
    verified = user.get("verified_addresses") or {}
    if isinstance(verified, dict):
        verifications.extend(verified.get("eth_addresses") or [])

    fid = user.get("fid")
    return IdentityRecord(
        social_id=int(fid) if fid is not None else None,
        handle=handle,
        display_name=display_name,
        avatar_url=avatar_url,
        primary_wallet_address=normalize_address(custody) if custody else None,
        linked_addresses=set(unique_lower([custody, *verifications])),
        bio=bio,
        profile_url=f"https://warpcast.com/{handle}" if handle else None,
    )


class NeynarClient:
    """Client for the Neynar Farcaster API."""

    def __init__(self, config: Config):
        self.config = config
        self.base_url = config.neynar_base_url.rstrip("/")
        self.api_key = config.neynar_api_key
        self.timeout = config.request_timeout

    def _make_request(self, endpoint: str, params: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Make a request to Neynar. Returns None on 404."""
        if not self.api_key:
            raise IdentityServiceError("Missing NEYNAR_API_KEY")

        url = f"{self.base_url}/{endpoint}"
        headers = {"x-api-key": self.api_key}

        try:
            response = requests.get(
                url, params=params, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise IdentityServiceError(
                _truncate(f"Neynar request failed: {e}")) from e

        # Neynar answers 404 when none of the lookups matched
        if response.status_code == 404:
            return None
        if response.status_code == 429:
            raise IdentityRateLimitError("Neynar 429: rate limited")
        if not response.ok:
            raise IdentityServiceError(_truncate(
                f"Neynar {response.status_code}: {response.text or response.reason}"))

        try:
            return response.json()
        except ValueError as e:
            raise IdentityServiceError(
                f"Neynar returned invalid JSON: {e}") from e

    def resolve_addresses(self, addresses: List[str],
                          address_type: str = "custody_address") -> Dict[str, List[IdentityRecord]]:
        """Look up candidate identities for each address (bulk-by-address)."""
        if not addresses:
            return {}

        params = {
            "addresses": ",".join(addresses),
            "address_types": address_type,  # custody_address or verified_address
        }
        data = self._make_request("user/bulk-by-address", params) or {}

        result: Dict[str, List[IdentityRecord]] = {}
        for address, users in data.items():
            if not isinstance(users, list):
                continue
            records = [user_to_identity(u) for u in users]
            result[normalize_address(address)] = [r for r in records if r]
        return result

    def resolve_social_id(self, social_id: int) -> Optional[IdentityRecord]:
        """Fetch one identity by fid."""
        data = self._make_request("user/bulk", {"fids": social_id}) or {}
        users = data.get("users")
        if not isinstance(users, list) or not users:
            return None
        return user_to_identity(users[0])
