"""Review detected listing changes and pending raw messages.

Usage examples:
    python scripts/review_changes.py                   # list pending changes
    python scripts/review_changes.py --counts          # messages per status
    python scripts/review_changes.py --approve 12 --reviewer alice
    python scripts/review_changes.py --preview 12
    python scripts/review_changes.py --save 12 --set price_ps5=42.5
"""

import argparse
import logging
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
from rich.panel import Panel
from rich.table import Table

from psn_catalog.db import RecordNotFoundError, close_db, count_messages_by_status, get_messages_by_status
from psn_catalog.db.settings import get_notifications, mark_notification_read
from psn_catalog.detection import InvalidTransitionError, approve_change, get_previous_message, reject_change
from psn_catalog.models.changes import ChangeSet
from psn_catalog.models.enums import RawMessageStatus
from psn_catalog.processing import ProcessingService


console = Console()


def truncate(text: str, max_len: int = 60) -> str:
    """Truncate text to max length."""
    text = " ".join(text.split())
    if len(text) <= max_len:
        return text
    return text[:max_len - 3] + "..."


def show_pending_changes(limit: int) -> None:
    messages = get_messages_by_status(RawMessageStatus.PENDING_CHANGE, limit=limit)
    if not messages:
        console.print("[green]No changes waiting for review[/green]")
        return

    table = Table(title=f"Changes waiting for review ({len(messages)})")
    table.add_column("ID", style="dim", justify="right")
    table.add_column("Channel", justify="right")
    table.add_column("Listing", justify="right")
    table.add_column("Change", style="cyan")
    table.add_column("Summary")

    for message in messages:
        change_set = ChangeSet.from_json(message.change_details)
        if change_set is None:
            change_type, summary = "-", truncate(message.text)
        else:
            change_type = change_set.change_type.value
            summary = "\n".join(change_set.summary(limit=3).splitlines()[1:]) or truncate(message.text)
        table.add_row(
            str(message.id),
            str(message.channel_id),
            str(message.external_message_id),
            change_type,
            summary,
        )

    console.print(table)


def show_counts() -> None:
    table = Table(title="Raw messages by status")
    table.add_column("Status", style="cyan")
    table.add_column("Count", justify="right")
    for status, count in count_messages_by_status().items():
        table.add_row(status.value, str(count))
    console.print(table)


def show_preview(service: ProcessingService, message_id: int) -> None:
    preview = service.preview(message_id)
    message = preview.message
    previous = get_previous_message(message.channel_id, message.external_message_id)

    console.print(Panel(message.text, title=f"Message {message.id} [{message.status.value}]"))
    if previous is not None and message.is_current:
        console.print(Panel(previous.text, title=f"Previous version {previous.id}", style="dim"))

    if preview.parsed is None:
        console.print("[yellow]No structured data found[/yellow]")
        return

    table = Table(title="Parsed fields")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    for name, value in preview.parsed.model_dump(exclude={"games", "description"}).items():
        if value is not None:
            table.add_row(name, str(value))
    console.print(table)

    if preview.known_games:
        games = Table(title="Games")
        games.add_column("Title")
        games.add_column("Known", justify="center")
        for title, known in preview.known_games.items():
            games.add_row(title, "[green]yes[/green]" if known else "[yellow]new[/yellow]")
        console.print(games)


def parse_edits(pairs: list[str]) -> dict[str, str]:
    """Turn ``field=value`` arguments into an edits dict."""
    edits = {}
    for pair in pairs:
        name, sep, value = pair.partition("=")
        if not sep:
            raise SystemExit(f"Invalid --set value {pair!r}, expected field=value")
        edits[name.strip()] = value.strip()
    return edits


def show_notifications() -> None:
    notifications = get_notifications(unread_only=True)
    if not notifications:
        console.print("[green]No unread notifications[/green]")
        return
    for notification in notifications:
        console.print(
            f"[bold]{notification.id}[/bold] [{notification.priority.value}] "
            f"{notification.title}\n  {notification.message}"
        )
        mark_notification_read(notification.id)


def main():
    parser = argparse.ArgumentParser(description="Review listing changes")
    parser.add_argument("--limit", type=int, default=50, help="Max pending changes to list")
    parser.add_argument("--counts", action="store_true", help="Show message counts per status")
    parser.add_argument("--approve", type=int, metavar="ID", help="Approve the change on a message")
    parser.add_argument("--reject", type=int, metavar="ID", help="Reject the change on a message")
    parser.add_argument("--preview", type=int, metavar="ID", help="Show how a message parses")
    parser.add_argument("--save", type=int, metavar="ID", help="Process and save a message to the catalog")
    parser.add_argument(
        "--set",
        action="append",
        default=[],
        metavar="FIELD=VALUE",
        help="Override a parsed field when saving (repeatable)",
    )
    parser.add_argument("--notifications", action="store_true", help="Show and mark unread notifications")
    parser.add_argument("--reviewer", default="admin", help="Name recorded as the reviewer")

    args = parser.parse_args()
    service = ProcessingService()

    try:
        if args.counts:
            show_counts()
        elif args.notifications:
            show_notifications()
        elif args.approve is not None:
            message = approve_change(args.approve, args.reviewer)
            console.print(f"[green]Approved change on message {message.id}, queued for processing[/green]")
        elif args.reject is not None:
            message = reject_change(args.reject, args.reviewer)
            console.print(f"[yellow]Rejected change on message {message.id}[/yellow]")
        elif args.preview is not None:
            show_preview(service, args.preview)
        elif args.save is not None:
            result = service.process_raw_message(args.save, parse_edits(args.set), args.reviewer)
            if result.success:
                console.print(
                    f"[green]Message {result.message_id}: {result.outcome.value}"
                    f" (account {result.account_id})[/green]"
                )
            else:
                console.print(f"[red]Could not save message {result.message_id}:[/red] {result.error}")
        else:
            show_pending_changes(args.limit)
    except (RecordNotFoundError, InvalidTransitionError) as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    finally:
        close_db()


if __name__ == "__main__":
    main()
