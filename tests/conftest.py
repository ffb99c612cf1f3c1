"""Shared fakes for the chain RPC and identity API."""

from typing import Dict, List, Optional

import pytest

from strike_tracker.api_clients import TransientNetworkError
from strike_tracker.config import NetworkConfig
from strike_tracker.identity import IdentityResolver
from strike_tracker.ledger import ActivityLedger
from strike_tracker.models import IdentityRecord
from strike_tracker.poller import ChainPoller

CONTRACT = "0x" + "11" * 20


def addr(n: int) -> str:
    """Deterministic lowercase address: addr(1) == 0x000...0001."""
    return "0x" + f"{n:040x}"


def topic_for(address: str) -> str:
    return "0x" + "0" * 24 + address[2:].lower()


def strike_log(address: str, block: int, log_index: int = 0, tx: Optional[str] = None) -> Dict:
    return {
        "topics": ["0x" + "ab" * 32, topic_for(address)],
        "blockNumber": block,
        "transactionHash": tx or "0x" + f"{block:064x}",
        "logIndex": log_index,
    }


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class FakeChain:
    """In-memory chain: a head height and a list of logs."""

    def __init__(self, head: int = 1000):
        self.head = head
        self.logs: List[Dict] = []
        self.errors: List[Exception] = []
        self.head_calls = 0
        self.log_calls: List[tuple] = []

    def fail_next(self, error: Exception):
        self.errors.append(error)

    def _maybe_fail(self):
        if self.errors:
            raise self.errors.pop(0)

    def get_block_height(self) -> int:
        self.head_calls += 1
        self._maybe_fail()
        return self.head

    def get_logs(self, contract_address, topic0, from_block, to_block):
        self.log_calls.append((from_block, to_block))
        self._maybe_fail()
        return [log for log in self.logs
                if from_block <= log["blockNumber"] <= to_block]


class FakeIdentityClient:
    """Answers address lookups from a table of candidates per address type."""

    def __init__(self):
        self.by_type: Dict[str, Dict[str, List[IdentityRecord]]] = {
            "custody_address": {},
            "verified_address": {},
        }
        self.users: Dict[int, IdentityRecord] = {}
        self.calls: List[tuple] = []
        self.fail = False
        self.error: Exception = TransientNetworkError("identity service down")

    def add(self, address: str, *records: IdentityRecord,
            address_type: str = "custody_address"):
        self.by_type[address_type][address] = list(records)

    def resolve_addresses(self, addresses, address_type="custody_address"):
        self.calls.append((tuple(addresses), address_type))
        if self.fail:
            raise self.error
        table = self.by_type[address_type]
        return {a: table[a] for a in addresses if a in table}

    def resolve_social_id(self, social_id):
        self.calls.append(("fid", social_id))
        if self.fail:
            raise self.error
        return self.users.get(social_id)


def identity(fid: int, handle: str = "", wallets=()) -> IdentityRecord:
    return IdentityRecord(
        social_id=fid,
        handle=handle or f"user{fid}",
        display_name=(handle or f"user{fid}").title(),
        linked_addresses=set(wallets),
    )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def chain():
    return FakeChain()


@pytest.fixture
def identity_client():
    return FakeIdentityClient()


@pytest.fixture
def network():
    return NetworkConfig(
        name="base",
        rpc_url="http://localhost:8545",
        contract_address=CONTRACT,
        chunk_size=50,
        lookback_window=100,
        rate_limit_backoff=20.0,
    )


@pytest.fixture
def resolver(identity_client, clock):
    return IdentityResolver(identity_client, batch_size=10,
                            retry_interval=60.0, clock=clock)


@pytest.fixture
def make_poller(network, chain, resolver, clock):
    created = []

    def factory():
        created.append(chain)
        return chain

    def _make(**overrides):
        ledger = ActivityLedger(network.name)
        poller = ChainPoller(
            overrides.get("network", network), ledger,
            overrides.get("resolver", resolver),
            client_factory=factory, clock=clock)
        poller.clients_created = created
        return poller

    return _make
