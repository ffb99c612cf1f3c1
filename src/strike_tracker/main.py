"""
Main CLI application for Strike Tracker.
"""

import time
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional, List

import typer
from rich.console import Console
from rich.table import Table

from .config import Config
from .models import CursorSnapshot, LeaderboardRow
from .service import StrikeTracker, UnknownNetworkError

logger = logging.getLogger(__name__)


app = typer.Typer(
    name="strike-tracker",
    help="Index Strike events across networks and rank players by Farcaster identity."
)

console = Console()


def load_config() -> Config:
    """Load application configuration."""
    try:
        return Config.from_env()
    except ValueError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        console.print(
            "\n[yellow]Check the contract addresses and chunk sizes in your .env file.[/yellow]")
        raise typer.Exit(1)


def status_table(statuses: List[CursorSnapshot]) -> Table:
    """Render poller status as a rich table."""
    table = Table(title="Pollers")

    table.add_column("Network", style="cyan", no_wrap=True)
    table.add_column("State", style="magenta", no_wrap=True)
    table.add_column("Scanned", style="white", justify="right")
    table.add_column("Head", style="white", justify="right")
    table.add_column("Lag", style="yellow", justify="right")
    table.add_column("Players", style="green", justify="right")
    table.add_column("Last scan", style="blue")
    table.add_column("Error", style="red")

    for status in statuses:
        state = status.state.value
        if status.cooldown_until:
            remaining = max(0, status.cooldown_until - time.time())
            state = f"{state} ({remaining:.0f}s)"
        table.add_row(
            status.network,
            state,
            f"{status.last_scanned_block:,}",
            f"{status.observed_head:,}",
            f"{status.lag:,}",
            f"{status.players:,}",
            status.last_scan,
            status.last_error[:60],
        )
    return table


def leaderboard_table(network: str, rows: List[LeaderboardRow]) -> Table:
    """Render a leaderboard as a rich table."""
    table = Table(title=f"{network} leaderboard")

    table.add_column("Rank", style="cyan", no_wrap=True)
    table.add_column("Player", style="magenta", no_wrap=True)
    table.add_column("Strikes", style="green", justify="right")
    table.add_column("Wallets", style="white", justify="right")

    for row in rows:
        if row.is_identity:
            player = f"@{row.handle}" if row.handle else row.key
        else:
            # Truncate addresses for display
            player = f"{row.address[:6]}...{row.address[-4:]}"
        table.add_row(str(row.rank), player,
                      f"{row.total:,}", str(row.wallet_count))
    return table


@app.command()
def run(
    network: Optional[str] = typer.Option(
        None, "--network", "-n", help="Network whose leaderboard is shown (default: first configured)"),
    refresh: float = typer.Option(
        30.0, "--refresh", "-r", help="Seconds between status refreshes"),
    top: int = typer.Option(
        10, "--top", "-t", help="Number of leaderboard rows to show"),
    duration: Optional[float] = typer.Option(
        None, "--duration", "-d", help="Stop after this many seconds"),
    log_level: str = typer.Option(
        "INFO", "--log-level", help="Logging level"),
):
    """Poll every configured network and print status and rankings."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    config = load_config()
    tracker = StrikeTracker(config)

    shown = network or tracker.networks[0]
    if shown not in tracker.networks:
        console.print(f"[red]Unknown network: {shown}[/red]")
        console.print(
            f"[yellow]Configured networks: {', '.join(tracker.networks)}[/yellow]")
        raise typer.Exit(1)

    for name, net in config.networks.items():
        console.print(
            f"[cyan]{name}[/cyan]: contract [yellow]{net.contract_address}[/yellow] via {net.rpc_url}")
    if not config.identity_enabled:
        console.print(
            "[yellow]NEYNAR_API_KEY not set; identity merging disabled.[/yellow]")

    tracker.start()
    started = time.time()
    try:
        while True:
            time.sleep(min(refresh, duration) if duration is not None else refresh)

            console.print(
                f"\n[bold]{datetime.now().strftime('%Y-%m-%d %H:%M:%S')}[/bold]")
            console.print(status_table(tracker.status.all_statuses()))
            try:
                console.print(leaderboard_table(
                    shown, tracker.get_leaderboard(shown, limit=top)))
            except UnknownNetworkError as e:
                console.print(f"[red]{e}[/red]")

            if duration is not None and time.time() - started >= duration:
                break
    except KeyboardInterrupt:
        console.print("[yellow]Stopping...[/yellow]")
    finally:
        tracker.stop()


@app.command()
def setup():
    """Setup the application by creating a .env file template."""
    env_content = """# Strike Tracker Configuration

# Optional: Neynar API key (get from https://neynar.com). Without it,
# leaderboards list wallets without merging them by Farcaster user.
NEYNAR_API_KEY=your_neynar_api_key_here

# Networks
BASE_RPC=https://mainnet.base.org
BASE_CONTRACT=0xB2B23e69b9d811D3D43AD473f90A171D18b19aab
BASE_CHUNK_SIZE=800
BASE_POLL_INTERVAL=6

HYPEREVM_RPC=https://rpc.hyperliquid.xyz/evm
HYPEREVM_CONTRACT=0x044A0B2D6eF67F5B82e51ec7229D84C0e83C8f02
HYPEREVM_CHUNK_SIZE=400
HYPEREVM_POLL_INTERVAL=14
HYPEREVM_RATE_LIMIT_BACKOFF=60

# Identity resolution
RESOLVE_BATCH_SIZE=100
RESOLVE_INTERVAL=15
RESOLVE_RETRY_INTERVAL=120
RESOLVE_RATE_LIMIT_BACKOFF=60

# Output Settings
LEADERBOARD_LIMIT=50
"""

    env_path = Path(".env")
    if env_path.exists():
        console.print("[yellow].env file already exists![/yellow]")
        if not typer.confirm("Overwrite existing .env file?"):
            return

    with open(env_path, 'w') as f:
        f.write(env_content)

    console.print(f"[green]Created .env file at {env_path.absolute()}[/green]")
    console.print(
        "\n[yellow]Please edit the .env file and add your API key:[/yellow]")
    console.print("1. Get a Neynar API key from https://neynar.com")
    console.print(
        "2. Replace 'your_neynar_api_key_here' with your real key")
    console.print("3. Run: strike-tracker run")


if __name__ == "__main__":
    app()
