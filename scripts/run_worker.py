"""Run the channel scrape worker.

Requires TELEGRAM_API_ID and TELEGRAM_API_HASH in environment or .env file.
Run with --login once to authorize the Telegram session.
"""

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

# Load .env file
from dotenv import load_dotenv
load_dotenv(Path(__file__).parent.parent / ".env")

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

from rich.console import Console
from rich.table import Table

from psn_catalog.db import close_db, count_messages_by_status, load_worker_settings
from psn_catalog.notifications import default_sink
from psn_catalog.sources.telegram import TelegramSource
from psn_catalog.worker import CycleSummary, IngestionScheduler, WorkerState


console = Console()


def show_cycle(summary: CycleSummary) -> None:
    """Print per-channel results of a cycle."""
    table = Table(title=f"Cycle finished in {summary.duration}")
    table.add_column("Channel", style="cyan")
    table.add_column("Strategy")
    table.add_column("Attempts", justify="right")
    table.add_column("Fetched", justify="right")
    table.add_column("New", justify="right")
    table.add_column("Changed", justify="right")
    table.add_column("Processed", justify="right")
    table.add_column("Removed", justify="right")
    table.add_column("Result")

    for result in summary.channels:
        outcome = "[green]ok[/green]" if result.success else f"[red]{result.error.error_type if result.error else 'failed'}[/red]"
        table.add_row(
            result.channel_name,
            result.strategy.value if result.strategy else "-",
            str(result.attempts),
            str(result.fetched),
            str(result.new),
            str(result.changed),
            str(result.processed),
            str(result.removed) if result.swept else "-",
            outcome,
        )

    console.print(table)
    if summary.cancelled:
        console.print("[yellow]Cycle was cancelled before all channels ran[/yellow]")


def show_status_counts() -> None:
    counts = count_messages_by_status()
    table = Table(title="Raw messages by status")
    table.add_column("Status", style="cyan")
    table.add_column("Count", justify="right")
    for status, count in counts.items():
        table.add_row(status.value, str(count))
    console.print(table)


async def run_once(source: TelegramSource) -> None:
    scheduler = IngestionScheduler(source, notifier=default_sink())
    await source.authenticate()
    try:
        summary = await scheduler.run_cycle(settings=load_worker_settings())
    finally:
        await source.close()
    show_cycle(summary)


async def run_forever(source: TelegramSource) -> None:
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers
            pass

    scheduler = IngestionScheduler(source, state=WorkerState(), notifier=default_sink())
    try:
        await scheduler.run(stop_event)
    finally:
        await source.close()

    status = scheduler.state.snapshot()
    console.print(f"\nWorker ended in state [bold]{status.activity.value}[/bold]")
    if status.last_error:
        console.print(f"[red]Last error:[/red] {status.last_error}")


async def login(source: TelegramSource) -> None:
    await source.login()
    await source.close()
    console.print("[green]Telegram session authorized[/green]")


def main():
    parser = argparse.ArgumentParser(description="Scrape account listings from Telegram channels")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single cycle over all active channels and exit",
    )
    parser.add_argument(
        "--login",
        action="store_true",
        help="Authorize the Telegram session interactively",
    )
    parser.add_argument(
        "--summary-only",
        action="store_true",
        help="Just show raw message counts, don't scrape",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log debug output",
    )

    args = parser.parse_args()
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        if args.summary_only:
            show_status_counts()
            return

        source = TelegramSource()
        if args.login:
            asyncio.run(login(source))
        elif args.once:
            asyncio.run(run_once(source))
            show_status_counts()
        else:
            asyncio.run(run_forever(source))
    except KeyboardInterrupt:
        console.print("\n[yellow]Worker interrupted by user[/yellow]")
    except Exception as e:
        console.print(f"\n[bold red]Fatal error:[/bold red] {e}")
        logger.exception("Worker failed with exception")
        raise
    finally:
        close_db()


if __name__ == "__main__":
    main()
