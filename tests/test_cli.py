from typer.testing import CliRunner

from conftest import addr
from strike_tracker.main import app, leaderboard_table, status_table
from strike_tracker.models import CursorSnapshot, LeaderboardRow, PollerState

runner = CliRunner()


def test_setup_writes_env_template(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    result = runner.invoke(app, ["setup"])

    assert result.exit_code == 0
    content = (tmp_path / ".env").read_text()
    assert "NEYNAR_API_KEY=" in content
    assert "HYPEREVM_CHUNK_SIZE=400" in content


def test_setup_keeps_existing_env_unless_confirmed(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / ".env").write_text("KEEP=1\n")

    result = runner.invoke(app, ["setup"], input="n\n")

    assert result.exit_code == 0
    assert (tmp_path / ".env").read_text() == "KEEP=1\n"


def test_run_exits_on_bad_config(monkeypatch):
    monkeypatch.setenv("BASE_CONTRACT", "bogus")

    result = runner.invoke(app, ["run", "--duration", "0"])

    assert result.exit_code == 1
    assert "Configuration error" in result.output


def test_tables_render_rows():
    status = CursorSnapshot(
        network="base", state=PollerState.IDLE, contract_address=addr(1),
        last_scanned_block=10, observed_head=10, healthy=True, last_error="",
        last_scan="caught_up:10", cooldown_until=None, players=2)
    rows = [
        LeaderboardRow(key="fid:1", total=4, rank=1, social_id=1, handle="alice",
                       address=None, wallet_count=2),
        LeaderboardRow(key=addr(2), total=1, rank=2, address=addr(2)),
    ]

    assert status_table([status]).row_count == 1
    assert leaderboard_table("base", rows).row_count == 2
