import pytest

from conftest import CONTRACT, FakeChain, addr, identity, strike_log
from strike_tracker.api_clients import IdentityRateLimitError, TransientNetworkError
from strike_tracker.config import Config, NetworkConfig
from strike_tracker.models import PollerState
from strike_tracker.service import StrikeTracker, UnknownNetworkError


def _config():
    networks = {
        name: NetworkConfig(name=name, rpc_url=f"http://{name}",
                            contract_address=CONTRACT, chunk_size=100,
                            lookback_window=100)
        for name in ("base", "hyperevm")
    }
    return Config(networks=networks, leaderboard_limit=10)


@pytest.fixture
def chains():
    return {"base": FakeChain(head=1000), "hyperevm": FakeChain(head=500)}


@pytest.fixture
def tracker(chains, identity_client, clock):
    return StrikeTracker(
        _config(),
        chain_client_factory=lambda network: chains[network.name],
        identity_client=identity_client,
        clock=clock,
    )


def _poll(tracker, ticks=2):
    for _ in range(ticks):
        for poller in tracker.pollers.values():
            poller.tick()


def test_leaderboard_merges_after_queue_drain(tracker, chains, identity_client):
    chains["base"].logs += [strike_log(addr(1), 950), strike_log(addr(2), 960),
                            strike_log(addr(2), 961), strike_log(addr(3), 970)]
    identity_client.add(addr(1), identity(42, "alice"))
    identity_client.add(addr(2), identity(42, "alice"))
    _poll(tracker)

    assert tracker.resolver.pending_count == 3
    tracker.resolver.drain_pending()

    rows = tracker.get_leaderboard("base")
    assert [(r.key, r.total, r.rank) for r in rows] == [
        ("fid:42", 3, 1),
        (addr(3), 1, 2),
    ]
    assert tracker.get_leaderboard("hyperevm") == []


def test_unknown_network_is_rejected(tracker):
    with pytest.raises(UnknownNetworkError):
        tracker.get_leaderboard("solana")
    with pytest.raises(UnknownNetworkError):
        tracker.get_status("solana")


def test_profile_reports_counts_per_network(tracker, chains, identity_client):
    chains["base"].logs.append(strike_log(addr(1), 950))
    chains["hyperevm"].logs += [strike_log(addr(1), 450), strike_log(addr(1), 451)]
    identity_client.add(addr(1), identity(42, "alice"))
    _poll(tracker)

    profile = tracker.get_profile(addr(1))

    assert profile.strike_counts == {"base": 1, "hyperevm": 2}
    assert profile.total == 3
    assert profile.identity.handle == "alice"
    assert profile.to_dict()["identity"]["linked_addresses"] == [addr(1)]


def test_profile_degrades_when_identity_service_is_down(tracker, chains, identity_client):
    chains["base"].logs.append(strike_log(addr(1), 950))
    identity_client.fail = True
    _poll(tracker)

    profile = tracker.get_profile(addr(1))

    assert profile.identity is None
    assert profile.strike_counts["base"] == 1
    assert [r.address for r in tracker.get_leaderboard("base")] == [addr(1)]


def test_profile_rejects_malformed_address(tracker):
    with pytest.raises(ValueError):
        tracker.get_profile("0x1234")


def test_profile_by_social_id_sums_all_wallets(tracker, chains, identity_client):
    chains["base"].logs += [strike_log(addr(1), 950), strike_log(addr(2), 951)]
    chains["hyperevm"].logs.append(strike_log(addr(2), 480))
    identity_client.users[42] = identity(42, wallets={addr(1), addr(2), addr(3)})
    _poll(tracker)

    profile = tracker.get_profile_by_social_id(42)

    assert profile.strike_counts == {"base": 2, "hyperevm": 1}
    assert profile.wallets == [addr(1), addr(2), addr(3)]
    assert profile.to_dict()["wallet_count"] == 3


def test_profile_by_unknown_social_id(tracker):
    profile = tracker.get_profile_by_social_id(12345)

    assert profile.identity is None
    assert profile.strike_counts == {"base": 0, "hyperevm": 0}


def test_failing_network_does_not_affect_the_other(tracker, chains):
    chains["base"].logs.append(strike_log(addr(1), 950))
    chains["hyperevm"].logs.append(strike_log(addr(2), 450))
    _poll(tracker, ticks=1)
    chains["base"].fail_next(TransientNetworkError("base rpc down"))
    _poll(tracker, ticks=1)

    base = tracker.get_status("base")
    hyperevm = tracker.get_status("hyperevm")
    assert not base.healthy
    assert base.last_error == "base rpc down"
    assert base.players == 0
    assert hyperevm.healthy
    assert hyperevm.players == 1
    assert hyperevm.state == PollerState.IDLE

    health = tracker.health()
    assert health["status"] == "degraded"
    assert health["identity_enabled"]
    assert health["networks"]["hyperevm"]["state"] == "idle"


def test_status_snapshot_fields(tracker):
    _poll(tracker, ticks=1)

    status = tracker.get_status("base")

    assert status.state == PollerState.CATCHING_UP
    assert status.last_scanned_block == 900
    assert status.observed_head == 1000
    assert status.lag == 100
    assert status.contract_address == CONTRACT
    assert tracker.health()["status"] == "ok"


def test_tracker_without_identity_key_shows_wallets_only(chains, clock):
    tracker = StrikeTracker(
        _config(), chain_client_factory=lambda network: chains[network.name],
        clock=clock)
    chains["base"].logs.append(strike_log(addr(1), 950))
    _poll(tracker)

    assert not tracker.resolver.enabled
    assert tracker.health()["identity_enabled"] is False
    assert tracker.get_leaderboard("base")[0].address == addr(1)


def test_start_and_stop_threads(tracker):
    tracker.start()
    assert len(tracker._threads) == 3
    tracker.stop(timeout=1.0)
    assert tracker._threads == []


def test_serialized_leaderboard_rows(tracker, chains, identity_client):
    chains["base"].logs += [strike_log(addr(1), 950), strike_log(addr(2), 951)]
    identity_client.add(addr(1), identity(42, "alice"))
    _poll(tracker)
    tracker.resolver.drain_pending()

    rows = [row.to_dict() for row in tracker.get_leaderboard("base")]

    assert rows == [
        {"key": addr(2), "total": 1, "rank": 1, "social_id": None,
         "handle": None, "display_name": None, "avatar_url": None,
         "address": addr(2), "wallet_count": 1},
        {"key": "fid:42", "total": 1, "rank": 1, "social_id": 42,
         "handle": "alice", "display_name": "Alice", "avatar_url": "",
         "address": None, "wallet_count": 1},
    ]


def test_health_reports_identity_cooldown(tracker, identity_client, clock):
    identity_client.fail = True
    identity_client.error = IdentityRateLimitError("Neynar 429: rate limited")
    tracker.resolver.enqueue([addr(1)])

    tracker.resolver.drain_pending()

    assert tracker.health()["identity_cooldown_until"] == clock.now + 60.0
    clock.advance(60)
    assert tracker.health()["identity_cooldown_until"] is None
