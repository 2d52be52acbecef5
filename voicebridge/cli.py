#!/usr/bin/env python3
"""
VoiceBridge CLI.

    COMMAND          ALIASES         WHAT IT DOES
    -------          -------         ----------------------------------
    serve            start, up       Start the API server
    usage            stats, costs    Show token usage from the ledger
    sync-calendars   sync            Pull calendar events into appointments
    ping             status, health  Ping a running instance
"""

import argparse
import asyncio
import sys

from voicebridge import __version__


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_serve(args):
    """Start the VoiceBridge API server."""
    import uvicorn
    from voicebridge.config import get_config, section, server_address

    cfg = get_config()
    default_host, default_port = server_address(cfg)
    host = args.host or default_host
    port = args.port or default_port

    print(f"  VoiceBridge v{__version__} on {host}:{port}")
    print(f"  Providers: {', '.join(sorted(section(cfg, 'providers'))) or 'none'}")
    print()

    uvicorn.run(
        "voicebridge.main:app",
        host=host,
        port=port,
        reload=args.reload,
        log_level="info",
    )


def cmd_usage(args):
    """Print token usage totals from the ledger."""
    from voicebridge.config import get_config, sqlite_path
    from voicebridge.storage.sqlite_store import SQLiteStore
    from voicebridge.usage import UsageTracker

    store = SQLiteStore(sqlite_path(get_config()))
    stats = UsageTracker(store).get_stats(days=args.days, user_id=args.user)

    scope = f" for {args.user}" if args.user else ""
    print(f"  Token usage, last {stats['days_queried']} days{scope}")
    print("  " + "─" * 48)
    print(f"  Requests:    {stats['requests']:,}")
    print(f"  Prompt:      {stats['prompt_tokens']:,}")
    print(f"  Completion:  {stats['completion_tokens']:,}")
    print(f"  Total:       {stats['total_tokens']:,}")

    if stats["by_model"]:
        print("\n  By model:")
        for model, row in stats["by_model"].items():
            print(f"    {model:<32} {row['total_tokens']:>10,}  ({row['requests']} req)")
    if stats["by_user"] and not args.user:
        print("\n  Top users:")
        for row in stats["by_user"]:
            print(f"    {row['user_id']:<32} {row['total_tokens']:>10,}  ({row['requests']} req)")


def cmd_sync_calendars(args):
    """Run the calendar sync job once for one workspace."""
    from voicebridge.config import get_config, section, sqlite_path
    from voicebridge.main import _setup_logging
    from voicebridge.services.calendars import CalendarClient, sync_calendars
    from voicebridge.storage.sqlite_store import SQLiteStore

    cfg = get_config()
    _setup_logging(cfg)
    store = SQLiteStore(sqlite_path(cfg))
    client = CalendarClient.from_config(section(cfg, "integrations"), store=store)

    written = asyncio.run(sync_calendars(store, client, args.workspace))
    print(f"  Synced {written} appointments for workspace {args.workspace}")


def cmd_ping(args):
    """Ping a running VoiceBridge instance."""
    import httpx

    url = (args.url or "http://localhost:8000").rstrip("/")
    try:
        resp = httpx.get(f"{url}/api/v1/health", timeout=5)
        if resp.status_code == 200:
            data = resp.json()
            print(f"  {url} is UP (v{data.get('version', '?')})")
            providers = httpx.get(f"{url}/api/v1/providers", timeout=5).json().get("providers", [])
            print(f"  Providers: {', '.join(providers) if providers else 'none'}")
        else:
            print(f"  No answer, got HTTP {resp.status_code}")
            sys.exit(1)
    except httpx.HTTPError as e:
        print(f"  Nothing at {url}: {e}")
        sys.exit(1)
    except ValueError:
        print(f"  {url} answered, but not with VoiceBridge JSON")
        sys.exit(1)


# ---------------------------------------------------------------------------
# Parser with aliases
# ---------------------------------------------------------------------------

def _add_command(subparsers, names, help_text, func, setup_fn=None):
    """Register a command under its name and aliases."""
    p = subparsers.add_parser(names[0], help=help_text, aliases=names[1:])
    p.set_defaults(func=func)
    if setup_fn:
        setup_fn(p)
    return p


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="voicebridge",
        description="VoiceBridge — chat-completion proxy and integrations API.",
        epilog="Run 'voicebridge <command> --help' for command-specific options.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--version", "-V", action="version",
        version=f"voicebridge {__version__}",
    )

    sub = parser.add_subparsers(dest="command", metavar="<command>")

    def setup_serve(p):
        p.add_argument("--host", default=None, help="Override listen host")
        p.add_argument("--port", "-p", type=int, default=None, help="Override listen port")
        p.add_argument("--reload", action="store_true", help="Auto-reload on code changes (dev)")

    _add_command(sub, ["serve", "start", "up"], "Start the API server", cmd_serve, setup_serve)

    def setup_usage(p):
        p.add_argument("--days", "-d", type=int, default=30, help="Days of history (default: 30)")
        p.add_argument("--user", "-u", default=None, help="Only this user id")

    _add_command(sub, ["usage", "stats", "costs"], "Show token usage from the ledger", cmd_usage, setup_usage)

    def setup_sync(p):
        p.add_argument("workspace", help="Workspace id to sync")

    _add_command(sub, ["sync-calendars", "sync"],
                 "Pull calendar events into appointments", cmd_sync_calendars, setup_sync)

    def setup_ping(p):
        p.add_argument("--url", "-u", default=None, help="VoiceBridge URL (default: http://localhost:8000)")

    _add_command(sub, ["ping", "status", "health"], "Ping a running instance", cmd_ping, setup_ping)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return

    args.func(args)


if __name__ == "__main__":
    main()
