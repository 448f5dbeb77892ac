"""Sync and key commands for the clipsync CLI."""

import json
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from clipsync.context import ClipSyncContext

logger = logging.getLogger(__name__)


def format_sync_time(ms: Optional[int]) -> str:
    if not ms:
        return "never"
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")


def _print_result(result) -> None:
    if result.success:
        merged = "merged with cloud" if result.merged else "no cloud data yet"
        print(f"✓ Sync complete ({merged}, {result.item_count} items)")
    else:
        print("✗ Sync failed")
        for error in result.errors:
            print(f"  {error}")


async def cmd_sync(args, ctx: "ClipSyncContext"):
    """Handle sync subcommands."""
    if args.sync_action == "status":
        if ctx.sync_engine is None:
            status = {"enabled": False, "configured": False, "device_id": ctx.device_id}
        else:
            await ctx.sync_engine.load()
            status = await ctx.sync_engine.status()
            status["configured"] = True

        if args.json:
            print(json.dumps(status, indent=2))
            return

        print(f"Device:        {status['device_id']}")
        if not status["configured"]:
            print("Cloud sync:    not configured")
            print("  Set CLIPSYNC_BACKEND_URL and CLIPSYNC_AUTH_TOKEN")
            return
        print(f"Cloud sync:    {'enabled' if status['enabled'] else 'disabled'}")
        print(f"State:         {status['state']}")
        print(f"Last sync:     {format_sync_time(status['last_sync'])}")
        print(f"Devices:       {status['device_count']}")
        if status["last_error"]:
            print(f"Last error:    {status['last_error']}")
        return

    engine = ctx.require_sync()
    await engine.load()

    if args.sync_action == "now":
        _print_result(await engine.sync_now())
    elif args.sync_action == "enable":
        _print_result(await engine.enable())
        await engine.stop_scheduler()
    elif args.sync_action == "disable":
        await engine.disable(clear_remote=args.clear_remote)
        print("✓ Cloud sync disabled")
        if args.clear_remote:
            print("✓ Cloud data deleted")


async def cmd_key(args, ctx: "ClipSyncContext"):
    """Export or import the encryption key."""
    if args.key_action == "export":
        print(await ctx.key_manager.export_key())
        print("Keep this secret: anyone holding it can read your synced clipboard.")
    elif args.key_action == "import":
        await ctx.key_manager.import_key(args.jwk)
        print("✓ Key imported")
