"""
Utility functions for address handling and log decoding.
"""

from typing import Iterable, List, Any
import re
import logging

from web3 import Web3

# Set up logging
logger = logging.getLogger(__name__)

STRIKE_EVENT_SIGNATURE = "Strike(address)"

RATE_LIMIT_MARKERS = ("rate limit", "ratelimit", "too many requests", "32005")


def is_valid_ethereum_address(address: str) -> bool:
    """Check if a string is a valid Ethereum address."""
    if not address or not isinstance(address, str):
        return False

    # Remove 0x prefix if present
    if address.startswith('0x'):
        address = address[2:]

    # Check if it's 40 hex characters
    return bool(re.match(r'^[0-9a-fA-F]{40}$', address))


def normalize_address(address: str) -> str:
    """Normalize an Ethereum address to lowercase with 0x prefix."""
    if not address:
        return ""

    address = address.strip().lower()
    if not address.startswith('0x'):
        address = '0x' + address

    return address


def unique_lower(addresses: Iterable[Any]) -> List[str]:
    """Normalize addresses, dropping blanks and duplicates but keeping order."""
    seen = set()
    result = []
    for address in addresses:
        if not address:
            continue
        normalized = normalize_address(str(address))
        if normalized not in seen:
            seen.add(normalized)
            result.append(normalized)
    return result


def strike_topic() -> str:
    """Return the topic0 hash of the Strike event as 0x-prefixed hex."""
    return Web3.to_hex(Web3.keccak(text=STRIKE_EVENT_SIGNATURE))


def topic_to_address(topic: Any) -> str:
    """
    Decode an indexed address topic.

    A topic is a 32-byte word; the address is the rightmost 20 bytes.
    Accepts hex strings as well as bytes/HexBytes as returned by web3.
    """
    if isinstance(topic, (bytes, bytearray)):
        hex_str = bytes(topic).hex()
    else:
        hex_str = str(topic)
        if hex_str.startswith('0x') or hex_str.startswith('0X'):
            hex_str = hex_str[2:]

    if len(hex_str) < 40 or not re.match(r'^[0-9a-fA-F]+$', hex_str):
        raise ValueError(f"Malformed address topic: {topic!r}")

    return normalize_address(hex_str[-40:])


def is_rate_limit_error(error: BaseException) -> bool:
    """Heuristic check whether a remote failure was a rate-limit response."""
    response = getattr(error, "response", None)
    if getattr(response, "status_code", None) == 429:
        return True

    rpc_response = getattr(error, "rpc_response", None)
    if isinstance(rpc_response, dict):
        rpc_error = rpc_response.get("error") or {}
        if isinstance(rpc_error, dict) and rpc_error.get("code") in (-32005, 429):
            return True

    message = str(error).lower()
    return any(marker in message for marker in RATE_LIMIT_MARKERS)


def chunk_list(items: List[Any], size: int) -> List[List[Any]]:
    """Split a list into consecutive chunks of at most `size` items."""
    if size <= 0:
        raise ValueError(f"Chunk size must be positive, got {size}")
    return [items[i:i + size] for i in range(0, len(items), size)]
