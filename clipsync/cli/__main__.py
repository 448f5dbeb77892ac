"""
clipsync CLI - Clipboard history and encrypted sync from the command line.

Usage:
    clipsync history [--limit N] [--json]
    clipsync add CONTENT [--source SOURCE]
    clipsync search [QUERY] [--type TYPE] [--source HOST] [--period PERIOD]
                    [--since DATE] [--until DATE] [--length LENGTH] [--json]
    clipsync delete ID
    clipsync favorite ID
    clipsync clear
    clipsync export [--output PATH]
    clipsync sync {now,status,enable,disable}
    clipsync key {export,import}
"""

import argparse
import asyncio
import json
import logging
import sys
from datetime import date
from pathlib import Path

from clipsync.cli.commands.sync import cmd_key, cmd_sync
from clipsync.config import get_settings
from clipsync.context import ClipSyncContext, create_context
from clipsync.protocols import ClipSyncError
from clipsync.storage import DATE_PERIODS, LENGTH_BUCKETS, parse_date_bound, period_range
from clipsync.types import ContentType

logger = logging.getLogger(__name__)


def _print_items(items, as_json: bool) -> None:
    if as_json:
        print(json.dumps([item.to_dict() for item in items], indent=2))
        return
    if not items:
        print("(No clipboard history)")
        return
    for item in items:
        star = "★" if item.favorite else " "
        print(f"{star} {item.id}  [{item.type.value:<5}] {item.preview}")


async def cmd_history(args, ctx: ClipSyncContext):
    """Show recent clipboard history."""
    _print_items(ctx.clipboard.snapshot()[: args.limit], args.json)


async def cmd_add(args, ctx: ClipSyncContext):
    """Capture text into the history."""
    item = await ctx.clipboard.add(args.content, args.source)
    if item is None:
        print("Nothing added (empty or same as the last capture)")
    else:
        print(f"✓ Added {item.type.value} item {item.id}")


async def cmd_search(args, ctx: ClipSyncContext):
    content_type = ContentType(args.type) if args.type else None
    since = until = None
    if args.period:
        since, until = period_range(args.period)
    if args.since:
        since = parse_date_bound(args.since)
    if args.until:
        until = parse_date_bound(args.until, end_of_day=True)
    items = ctx.clipboard.search(
        args.query,
        content_type,
        source=args.source,
        since=since,
        until=until,
        length=args.length,
    )
    _print_items(items, args.json)


async def cmd_export(args, ctx: ClipSyncContext):
    """Write history and settings to a JSON file."""
    data = ctx.export_data()
    if args.output == "-":
        print(json.dumps(data, indent=2))
        return
    path = Path(args.output or f"clipsync-export-{date.today().isoformat()}.json")
    path.write_text(json.dumps(data, indent=2))
    print(f"✓ Exported {len(data['history'])} items to {path}")


async def cmd_delete(args, ctx: ClipSyncContext):
    if await ctx.clipboard.delete(args.id):
        print(f"✓ Deleted {args.id}")
    else:
        print(f"✗ No item {args.id}")


async def cmd_favorite(args, ctx: ClipSyncContext):
    if await ctx.clipboard.toggle_favorite(args.id):
        item = ctx.clipboard.get(args.id)
        print(f"✓ {'Added to' if item.favorite else 'Removed from'} favorites")
    else:
        print(f"✗ No item {args.id}")


async def cmd_clear(args, ctx: ClipSyncContext):
    await ctx.clipboard.clear()
    print("✓ Clipboard history cleared")


COMMANDS = {
    "history": cmd_history,
    "add": cmd_add,
    "search": cmd_search,
    "delete": cmd_delete,
    "favorite": cmd_favorite,
    "clear": cmd_clear,
    "export": cmd_export,
    "sync": cmd_sync,
    "key": cmd_key,
}


async def run(args) -> int:
    # No periodic sync from the CLI
    ctx = await create_context(get_settings(), start_sync=False)
    try:
        await COMMANDS[args.command](args, ctx)
        return 0
    except ClipSyncError as e:
        print(f"✗ {e}")
        return 1
    finally:
        await ctx.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="clipsync",
        description="Clipboard history with end-to-end encrypted sync",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    p_history = subparsers.add_parser("history", help="Show clipboard history")
    p_history.add_argument("--limit", "-l", type=int, default=20)
    p_history.add_argument("--json", "-j", action="store_true")

    p_add = subparsers.add_parser("add", help="Add text to the history")
    p_add.add_argument("content", help="Text to capture")
    p_add.add_argument("--source", "-s", default="manual", help="Source URL or kind")

    p_search = subparsers.add_parser("search", help="Search the history")
    p_search.add_argument("query", nargs="?", default="", help="Text to look for in content, type or tags")
    p_search.add_argument("--type", "-t", choices=[t.value for t in ContentType])
    p_search.add_argument("--source", help="Capture hostname contains this text")
    p_search.add_argument("--period", choices=DATE_PERIODS, help="Captured within this period")
    p_search.add_argument("--since", help="Captured on or after this ISO date")
    p_search.add_argument("--until", help="Captured on or before this ISO date")
    p_search.add_argument("--length", choices=LENGTH_BUCKETS, help="short (<50), medium or long (>200)")
    p_search.add_argument("--json", "-j", action="store_true")

    p_delete = subparsers.add_parser("delete", help="Delete an item")
    p_delete.add_argument("id", type=int)

    p_favorite = subparsers.add_parser("favorite", help="Toggle an item's favorite flag")
    p_favorite.add_argument("id", type=int)

    subparsers.add_parser("clear", help="Clear the whole history")

    p_export = subparsers.add_parser("export", help="Export history and settings as JSON")
    p_export.add_argument(
        "--output", "-o", help="File to write (default clipsync-export-DATE.json, - for stdout)"
    )

    p_sync = subparsers.add_parser("sync", help="Cloud sync operations")
    sync_sub = p_sync.add_subparsers(dest="sync_action", required=True)
    sync_sub.add_parser("now", help="Run one sync cycle")
    sync_status = sync_sub.add_parser("status", help="Show sync status")
    sync_status.add_argument("--json", "-j", action="store_true")
    sync_sub.add_parser("enable", help="Enable cloud sync and run the first sync")
    sync_disable = sync_sub.add_parser("disable", help="Disable cloud sync")
    sync_disable.add_argument(
        "--clear-remote", action="store_true", help="Also delete data stored in the cloud"
    )

    p_key = subparsers.add_parser("key", help="Encryption key transfer between devices")
    key_sub = p_key.add_subparsers(dest="key_action", required=True)
    key_sub.add_parser("export", help="Print this device's key")
    key_import = key_sub.add_parser("import", help="Use a key exported on another device")
    key_import.add_argument("jwk", help="Exported key (JSON)")

    return parser


def main():
    args = build_parser().parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    sys.exit(asyncio.run(run(args)))


if __name__ == "__main__":
    main()
