"""Command-line entry point for Inbox Sync."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
import signal
from pathlib import Path

import uvicorn

from inbox_sync.core import AppSettings, Category, configure_logging, load_app_settings
from inbox_sync.core.models import SearchFilters
from inbox_sync.service import InboxSyncService
from inbox_sync.storage import SqliteMessageIndex
from inbox_sync.web import create_app

LOGGER = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Create and configure the CLI argument parser."""
    parser = argparse.ArgumentParser(description="Multi-account IMAP sync")
    parser.add_argument(
        "--env-file",
        type=Path,
        default=Path(".env"),
        help="Path to a .env file containing configuration overrides.",
    )
    parser.add_argument(
        "command",
        nargs="?",
        default="info",
        choices=["info", "sync", "serve", "search", "counts"],
        help="Operation to execute.",
    )
    parser.add_argument(
        "--query",
        default=None,
        help="Text to search for (search command).",
    )
    parser.add_argument(
        "--category",
        default=None,
        help="Restrict search results to one category.",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=20,
        help="Maximum number of search results (default: 20).",
    )
    return parser


def execute(args: argparse.Namespace, settings: AppSettings) -> None:
    """Execute the requested CLI command."""
    command = args.command
    if command == "info":
        _print_info(settings)
    elif command == "sync":
        service = InboxSyncService(settings)
        try:
            asyncio.run(_sync_until_signalled(service))
        finally:
            service.close()
    elif command == "serve":
        service = InboxSyncService(settings)
        LOGGER.info(
            "Starting API server on http://%s:%s", settings.api.host, settings.api.port
        )
        uvicorn.run(
            create_app(settings, service=service),
            host=settings.api.host,
            port=settings.api.port,
            log_config=None,
        )
    elif command == "search":
        _run_search(settings, query=args.query, category=args.category, limit=args.limit)
    elif command == "counts":
        with SqliteMessageIndex(settings.storage) as index:
            for category, total in index.counts_by_category().items():
                print(f"{category.value:<16} {total:>6}")


def main() -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args()

    settings = load_app_settings(env_file=args.env_file)
    configure_logging(settings.logging)
    execute(args, settings)


def _print_info(settings: AppSettings) -> None:
    if not settings.accounts:
        print("No accounts configured. Set INBOX_SYNC_ACCOUNTS__1__HOST and friends.")
    for account in settings.build_accounts():
        folders = ", ".join(account.watch_folders) or "all folders"
        print(
            f"{account.id}: {account.username}@{account.host}:{account.port} "
            f"(ssl={account.use_ssl}, last {account.lookback_days} days, watching {folders})"
        )
    print(f"Database path: {settings.storage.db_path}")
    print(f"Slack alerts: {'on' if settings.notifications.slack_webhook_url else 'off'}")
    print(f"Webhook events: {'on' if settings.notifications.webhook_url else 'off'}")


async def _sync_until_signalled(service: InboxSyncService) -> None:
    """Run sync until SIGINT or SIGTERM, then close every session."""
    loop = asyncio.get_running_loop()
    stop = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)

    await service.start()
    try:
        await stop.wait()
        LOGGER.info("Shutdown requested; closing all connections")
    finally:
        await service.stop()


def _run_search(
    settings: AppSettings, *, query: str | None, category: str | None, limit: int
) -> None:
    label = Category.parse(category) if category else None
    with SqliteMessageIndex(settings.storage) as index:
        result = index.search(
            SearchFilters(query=query, category=label, size=max(limit, 1))
        )
    if not result.messages:
        print("No messages found.")
        return

    print(f"Showing {len(result.messages)} of {result.total} message(s):")
    header = f"{'Received':<17}  {'Category':<14}  {'From':<28}  Subject"
    print(header)
    print("-" * len(header))
    for message in result.messages:
        received = message.received_at.strftime("%Y-%m-%d %H:%M")
        print(
            f"{received:<17}  {message.category.value:<14}  "
            f"{(message.sender or '-')[:28]:<28}  {message.subject or '(no subject)'}"
        )


if __name__ == "__main__":
    main()
