"""Command-line interface for Mailbox Sync.

This module provides the main entry point for the CLI application.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Any

import structlog

from mailbox_sync.config import Settings, get_settings
from mailbox_sync.enrichment import OllamaEnricher
from mailbox_sync.exceptions import MailboxSyncError
from mailbox_sync.models import Account, Category, FocusRuleType, Owner
from mailbox_sync.provider import GmailMailboxProvider, TokenFileCredentialResolver
from mailbox_sync.session import Services
from mailbox_sync.store import SqliteMessageStore
from mailbox_sync.sync import ContinuationTracker, FolderPageRequest

logger = structlog.get_logger()


class PrintChannel:
    """Delivery channel that writes pushed events to stdout."""

    async def emit(self, event: str, payload: dict[str, Any]) -> None:
        status = payload.get("status", "")
        text = payload.get("message", "")
        print(f"{event}\t{payload.get('messageId', '')}\t{status}\t{text}")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="mailbox-sync", description="Mailbox Sync")
    parser.add_argument(
        "--db",
        type=Path,
        default=None,
        help="Path to the SQLite store (default: settings store_db_path)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    def _owner_args(p: argparse.ArgumentParser) -> None:
        p.add_argument("--owner", required=True, help="Owner identity")
        p.add_argument("--mailbox", required=True, help="Mailbox address")

    sync_parser = subparsers.add_parser("sync", help="Sync folder pages into the local store")
    _owner_args(sync_parser)
    sync_parser.add_argument("--folder", default="INBOX", help="Folder id (Gmail label)")
    sync_parser.add_argument("--pages", type=int, default=1, help="Number of pages to sync")

    enrich_parser = subparsers.add_parser("enrich", help="Enrich stored messages of a folder")
    _owner_args(enrich_parser)
    enrich_parser.add_argument("--folder", default="INBOX", help="Folder id (Gmail label)")
    enrich_parser.add_argument("--limit", type=int, default=20, help="Max messages to submit")
    enrich_parser.add_argument(
        "--force",
        action="store_true",
        help="Clear existing enrichment and analyze again",
    )

    focus_parser = subparsers.add_parser("focus", help="Manage focus folders")
    focus_sub = focus_parser.add_subparsers(dest="subcommand", required=True)

    add_parser = focus_sub.add_parser("add", help="Add a focus rule")
    _owner_args(add_parser)
    add_parser.add_argument(
        "--type",
        required=True,
        choices=[t.value for t in FocusRuleType],
        help="Rule type",
    )
    add_parser.add_argument("--value", required=True, help="Subject text or sender address")

    stats_parser = focus_sub.add_parser("stats", help="Show focus folder statistics")
    _owner_args(stats_parser)

    categories_parser = subparsers.add_parser("categories", help="Manage enrichment categories")
    categories_sub = categories_parser.add_subparsers(dest="subcommand", required=True)

    cat_add_parser = categories_sub.add_parser("add", help="Add a category")
    _owner_args(cat_add_parser)
    cat_add_parser.add_argument("--name", required=True, help="Name the enricher returns")
    cat_add_parser.add_argument("--label", default="", help="Display label (default: name)")
    cat_add_parser.add_argument("--description", default="", help="Guidance for the enricher")

    cat_list_parser = categories_sub.add_parser("list", help="List categories")
    _owner_args(cat_list_parser)

    cat_delete_parser = categories_sub.add_parser("delete", help="Delete a category")
    _owner_args(cat_delete_parser)
    cat_delete_parser.add_argument("--name", required=True, help="Category name")

    return parser


async def _open_services(args: argparse.Namespace, settings: Settings) -> Services:
    store = SqliteMessageStore(args.db or settings.store_db_path)
    store.initialize()

    # The CLI acts for a single local owner; make sure its records exist.
    owner = await store.get_owner(args.owner)
    if owner is None:
        owner = Owner(id=args.owner, external_id=args.owner, email=args.mailbox)
        await store.save_owner(owner)
    if await store.get_account(owner.id, args.mailbox) is None:
        await store.save_account(Account(owner_id=owner.id, mailbox=args.mailbox))

    return Services.build(
        store=store,
        provider=GmailMailboxProvider(settings),
        credentials=TokenFileCredentialResolver(
            settings.gmail_token_path, args.mailbox, settings.provider_name
        ),
        enricher=OllamaEnricher(settings),
        settings=settings,
    )


async def _cmd_sync(args: argparse.Namespace, settings: Settings) -> int:
    services = await _open_services(args, settings)
    tracker = ContinuationTracker()

    for page in range(1, args.pages + 1):
        request = FolderPageRequest(
            owner_id=args.owner, mailbox=args.mailbox, folder_id=args.folder, page=page
        )
        result = await services.orchestrator.sync_page(
            request, tracker=tracker, connection_id="cli"
        )
        for m in result.messages:
            read = "READ" if m.read else "UNREAD"
            focus = m.focus_folder or "-"
            print(f"{read}\t{m.timestamp.isoformat()}\t{m.sender}\t{m.subject}\t{focus}")
        if not result.has_more:
            break
    return 0


async def _cmd_enrich(args: argparse.Namespace, settings: Settings) -> int:
    services = await _open_services(args, settings)
    owner = await services.orchestrator.resolve_owner(args.owner)
    messages = await services.store.find_messages(
        owner.id, args.mailbox, args.folder, limit=args.limit
    )

    channel = PrintChannel()
    queued = await services.enrichment.submit(messages, channel, force_reanalyze=args.force)
    print(f"Queued {len(queued)} of {len(messages)} messages")
    await services.enrichment.shutdown()
    return 0


async def _cmd_focus_add(args: argparse.Namespace, settings: Settings) -> int:
    services = await _open_services(args, settings)
    owner = await services.orchestrator.resolve_owner(args.owner)
    item = await services.focus.add_item(owner.id, args.mailbox, args.type, args.value)
    print(f"Added focus rule {item.type.value} '{item.value}' -> {item.folder_name}")
    return 0


async def _cmd_focus_stats(args: argparse.Namespace, settings: Settings) -> int:
    services = await _open_services(args, settings)
    owner = await services.orchestrator.resolve_owner(args.owner)
    stats = await services.focus.get_statistics(owner.id, args.mailbox)
    print(f"Total classified: {stats.total_classified}")
    for bucket, s in stats.per_bucket.items():
        last = s.last_activity.isoformat() if s.last_activity else "(never)"
        print(f"- {bucket}: {s.count} messages, last activity {last}")
    return 0


def _print_categories(categories: list[Category]) -> None:
    if not categories:
        print("No categories; enrichment waits until one is added")
    for c in categories:
        description = f" - {c.description}" if c.description else ""
        print(f"- {c.name} ({c.label}){description}")


async def _cmd_categories_add(args: argparse.Namespace, settings: Settings) -> int:
    services = await _open_services(args, settings)
    owner = await services.orchestrator.resolve_owner(args.owner)
    category = Category(name=args.name, label=args.label, description=args.description)
    categories = await services.categories.add_category(owner.id, args.mailbox, category)
    print(f"Added category '{category.name}'")
    _print_categories(categories)
    return 0


async def _cmd_categories_list(args: argparse.Namespace, settings: Settings) -> int:
    services = await _open_services(args, settings)
    owner = await services.orchestrator.resolve_owner(args.owner)
    _print_categories(await services.categories.list_categories(owner.id, args.mailbox))
    return 0


async def _cmd_categories_delete(args: argparse.Namespace, settings: Settings) -> int:
    services = await _open_services(args, settings)
    owner = await services.orchestrator.resolve_owner(args.owner)
    categories = await services.categories.delete_category(owner.id, args.mailbox, args.name)
    print(f"Deleted category '{args.name}'")
    _print_categories(categories)
    return 0


def main(args: list[str] | None = None) -> int:
    """Main entry point for the Mailbox Sync CLI.

    Args:
        args: Command-line arguments. If None, uses sys.argv.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    if args is None:
        args = sys.argv[1:]

    settings = get_settings()

    # Configure logging
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.getLevelName(settings.log_level.upper())
        ),
    )

    logger.info("mailbox_sync_started", version="0.1.0", debug=settings.debug)

    parser = _build_parser()
    parsed = parser.parse_args(args)

    commands = {
        ("sync", None): _cmd_sync,
        ("enrich", None): _cmd_enrich,
        ("focus", "add"): _cmd_focus_add,
        ("focus", "stats"): _cmd_focus_stats,
        ("categories", "add"): _cmd_categories_add,
        ("categories", "list"): _cmd_categories_list,
        ("categories", "delete"): _cmd_categories_delete,
    }
    command = commands.get((parsed.command, getattr(parsed, "subcommand", None)))
    if command is None:
        logger.error("unknown_command", command=parsed.command)
        return 2

    try:
        return asyncio.run(command(parsed, settings))
    except MailboxSyncError as exc:
        logger.error("command_failed", command=parsed.command, kind=exc.kind.value, error=str(exc))
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
