"""Register channels and parsing rules.

Usage examples:
    python scripts/manage_channels.py --list
    python scripts/manage_channels.py --add-profile "Default shop"
    python scripts/manage_channels.py --add-rule 1 price_ps5 "ps5[^\\d]*([\\d.,]+)"
    python scripts/manage_channels.py --add-channel @psn_shop "PSN Shop" --profile 1
    python scripts/manage_channels.py --set worker.removal_sweep_enabled true
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

from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from psn_catalog.db import add_parsing_rule, close_db, create_channel, create_parsing_profile, set_setting
from psn_catalog.db.channels import get_parsing_rules, list_channels, set_channel_status
from psn_catalog.db.settings import load_worker_settings
from psn_catalog.models.enums import ChannelStatus, FieldType


console = Console()


def show_channels() -> None:
    channels = list_channels()
    if not channels:
        console.print("[yellow]No channels registered[/yellow]")
        return

    table = Table(title="Channels")
    table.add_column("ID", style="dim", justify="right")
    table.add_column("Name", style="cyan")
    table.add_column("External ID")
    table.add_column("Status")
    table.add_column("Profile", justify="right")
    table.add_column("Rules", justify="right")
    table.add_column("Last scraped")
    table.add_column("Last msg", justify="right")

    for channel in channels:
        rules = get_parsing_rules(channel.parsing_profile_id) if channel.parsing_profile_id else []
        table.add_row(
            str(channel.id),
            channel.name,
            channel.external_id,
            channel.status.value,
            str(channel.parsing_profile_id or "-"),
            str(len(rules)),
            channel.last_scraped_at.strftime("%Y-%m-%d %H:%M") if channel.last_scraped_at else "never",
            str(channel.last_scraped_message_id or "-"),
        )

    console.print(table)


def show_settings() -> None:
    settings = load_worker_settings()
    table = Table(title="Worker settings")
    table.add_column("Key", style="cyan")
    table.add_column("Value")
    for name, value in settings.model_dump().items():
        table.add_row(settings.setting_key(name), str(value))
    console.print(table)


def main():
    parser = argparse.ArgumentParser(description="Manage source channels")
    parser.add_argument("--list", action="store_true", help="List channels")
    parser.add_argument("--add-profile", metavar="NAME", help="Create a parsing profile")
    parser.add_argument(
        "--add-rule",
        nargs=3,
        metavar=("PROFILE_ID", "FIELD", "PATTERN"),
        help=f"Add a parsing rule. FIELD is one of: {', '.join(f.value for f in FieldType)}",
    )
    parser.add_argument("--priority", type=int, default=0, help="Priority of the added rule, lower runs first")
    parser.add_argument(
        "--add-channel",
        nargs=2,
        metavar=("EXTERNAL_ID", "NAME"),
        help="Register a channel",
    )
    parser.add_argument("--profile", type=int, help="Parsing profile for the added channel")
    parser.add_argument("--fetch-limit", type=int, help="Initial fetch count for the added channel")
    parser.add_argument("--delay-ms", type=int, help="Pause after scraping the added channel")
    parser.add_argument(
        "--status",
        nargs=2,
        metavar=("CHANNEL_ID", "STATUS"),
        help=f"Set channel status: {', '.join(s.value for s in ChannelStatus)}",
    )
    parser.add_argument("--set", nargs=2, metavar=("KEY", "VALUE"), help="Store a setting")
    parser.add_argument("--settings", action="store_true", help="Show effective worker settings")

    args = parser.parse_args()

    try:
        if args.add_profile:
            profile_id = create_parsing_profile(args.add_profile)
            console.print(f"[green]Created profile {profile_id}[/green]")
        elif args.add_rule:
            profile_id, field, pattern = args.add_rule
            rule_id = add_parsing_rule(int(profile_id), FieldType(field), pattern, priority=args.priority)
            console.print(f"[green]Added rule {rule_id} to profile {profile_id}[/green]")
        elif args.add_channel:
            external_id, name = args.add_channel
            channel_id = create_channel(
                external_id,
                name,
                parsing_profile_id=args.profile,
                fetch_limit=args.fetch_limit,
                delay_after_scrape_ms=args.delay_ms,
            )
            console.print(f"[green]Registered channel {channel_id}[/green]")
        elif args.status:
            channel_id, status = args.status
            set_channel_status(int(channel_id), ChannelStatus(status))
            console.print(f"[green]Channel {channel_id} is now {status}[/green]")
        elif args.set:
            key, value = args.set
            set_setting(key, value)
            console.print(f"[green]{key} = {value}[/green]")
        elif args.settings:
            show_settings()
        else:
            show_channels()
    except (ValueError, ValidationError) as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)
    finally:
        close_db()


if __name__ == "__main__":
    main()
