"""Command-line entry point for iMessage Sync."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
import textwrap

from imessage_sync.config.settings import ImessageSyncSettings
from imessage_sync.core.exceptions import StartupError
from imessage_sync.core.models import CycleResult
from imessage_sync.core.phone import normalize_identifier
from imessage_sync.pipeline.service import SyncService


def setup_logging(level: str) -> None:
    """Configure logging with timestamp and module info."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def print_cycle(result: CycleResult) -> None:
    """Print a per-conversation summary of a finished cycle."""
    mode = " (simulation)" if result.simulation else ""
    print(f"\nSync complete{mode}:")
    for conv in result.conversations:
        if conv.error:
            print(f"  {conv.display_name}: ERROR {conv.error}")
            continue
        print(
            f"  {conv.display_name}: {conv.new_messages} new "
            f"({conv.incoming} received, {conv.outgoing} sent) "
            f"emailed={conv.sent} failed={conv.failed} simulated={conv.simulated}"
        )
    print(f"Total: {result.total_new} new, {result.total_sent} sent, {result.total_failed} failed")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="iMessage Sync - Forward new iMessages to email"
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Log per-message debug traces"
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    subparsers.add_parser("run-once", help="Run a single sync cycle")
    subparsers.add_parser("service", help="Sync continuously on the configured interval")
    subparsers.add_parser("status", help="Show tracked conversations and watermarks")
    list_parser = subparsers.add_parser(
        "list", help="List conversations found in the Messages archive"
    )
    list_parser.add_argument(
        "--limit", "-l", type=int, default=20, help="Conversations to show (default: 20)"
    )
    list_parser.add_argument(
        "--groups", "-g", action="store_true", help="Include group conversations"
    )

    messages_parser = subparsers.add_parser(
        "messages", help="Show recent messages for a contact (read-only)"
    )
    messages_parser.add_argument("identifier", help="Phone number or email")
    messages_parser.add_argument(
        "--limit", "-l", type=int, default=20, help="Messages to show (default: 20)"
    )
    messages_parser.add_argument(
        "--days", "-d", type=int, default=7, help="Days back to search (default: 7)"
    )
    direction = messages_parser.add_mutually_exclusive_group()
    direction.add_argument("--sent", action="store_true", help="Only messages you sent")
    direction.add_argument(
        "--received", action="store_true", help="Only messages you received"
    )
    messages_parser.add_argument(
        "--raw", action="store_true", help="Show timestamps, GUIDs and chat ids"
    )

    subparsers.add_parser("test-email", help="Send a test email to the configured recipient")

    track_parser = subparsers.add_parser("track", help="Start forwarding a conversation")
    track_parser.add_argument(
        "identifier", help="Phone number or email (comma-separated for group chats)"
    )
    track_parser.add_argument("--name", "-n", help="Display name (default: from contacts)")

    untrack_parser = subparsers.add_parser("untrack", help="Stop forwarding a conversation")
    untrack_parser.add_argument("identifier")

    reset_parser = subparsers.add_parser(
        "reset", help="Clear a conversation's watermark (next sync uses the first-sync window)"
    )
    reset_parser.add_argument("identifier")

    # contacts subcommands
    contacts_parser = subparsers.add_parser("contacts", help="Manage contact names")
    contacts_sub = contacts_parser.add_subparsers(dest="contacts_command")
    add_parser = contacts_sub.add_parser("add", help="Add a manual name override")
    add_parser.add_argument("identifier")
    add_parser.add_argument("name")
    remove_parser = contacts_sub.add_parser("remove", help="Remove a manual name override")
    remove_parser.add_argument("identifier")
    contacts_sub.add_parser("list", help="Show cache info and manual overrides")
    test_parser = contacts_sub.add_parser("test", help="Show how an identifier resolves")
    test_parser.add_argument("identifier")

    return parser


async def run_once(service: SyncService) -> int:
    await service.check_startup()
    result = await service.run_once()
    print_cycle(result)
    return 0


async def run_service(service: SyncService) -> int:
    config = service.config_store.load()
    if not config.sync.enable_auto_sync:
        print("Auto-sync is disabled. Set sync.enable_auto_sync=true in the config file.")
        return 1
    if not config.sync.tracked_conversations:
        print("No conversations tracked. Use 'track' to add one.")
        return 1

    await service.check_startup()
    scheduler = service.build_scheduler()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, scheduler.request_shutdown)

    print(
        f"Syncing {len(config.sync.tracked_conversations)} conversation(s) every "
        f"{config.sync.sync_interval} minute(s). Press Ctrl+C to stop."
    )
    await scheduler.run_forever()
    return 0


def show_status(service: SyncService) -> None:
    config = service.config_store.load()
    print(f"\nConfig: {service.config_store.path}")
    print(f"Auto-sync: {'enabled' if config.sync.enable_auto_sync else 'disabled'}")
    print(f"Interval: {config.sync.sync_interval} minute(s)")
    print(f"Email: {'enabled' if config.email.enabled else 'disabled'}")
    last = config.sync.last_global_sync
    print(f"Last sync: {last.isoformat() if last else 'never'}")

    print(f"\nTracked conversations ({len(config.sync.tracked_conversations)}):")
    for conv in config.sync.tracked_conversations:
        watermark = conv.last_sync_date.isoformat() if conv.last_sync_date else "never"
        kind = "group" if conv.is_group else "direct"
        print(f"  {conv.display_name:30s} {conv.chat_identifier:30s} {kind:6s} {watermark}")


def list_conversations(service: SyncService, args: argparse.Namespace) -> None:
    conversations = asyncio.run(service.list_conversations(include_groups=args.groups))
    shown = conversations[: args.limit]
    if not shown:
        print("No conversations found.")
        return

    print("\nRecent message threads:\n")
    for i, conv in enumerate(shown, 1):
        members = f" ({len(conv.participants)} participants)" if conv.is_group else ""
        print(f"{i:3d}. {conv.display_name}{members}")
        print(f"     {conv.chat_identifier}")
        print(
            f"     {conv.message_count} msgs, last "
            f"{conv.last_message_date.astimezone():%Y-%m-%d %H:%M}"
        )
    print(f"\nShowing {len(shown)} of {len(conversations)} conversations")


def show_messages(service: SyncService, args: argparse.Namespace) -> None:
    direction = "sent" if args.sent else "received" if args.received else None
    history = asyncio.run(
        service.recent_messages(
            args.identifier, days=args.days, limit=args.limit, direction=direction
        )
    )

    print(
        f"\nMessages for {history.display_name} ({history.chat_identifier}), "
        f"last {args.days} day(s)"
    )
    if not history.messages:
        print("No messages found matching your filters.")
        return

    print(f"Found {history.total} message(s), showing {len(history.messages)}:\n")
    for i, msg in enumerate(history.messages, 1):
        who = "You" if msg.is_from_me else service.resolver.resolve(msg.sender)
        print(f"{i:3d}. {who}  {msg.timestamp.astimezone():%Y-%m-%d %H:%M:%S}")
        if args.raw:
            print(f"     {msg.timestamp.isoformat()} guid={msg.guid} chat={msg.conversation_id}")
        print(textwrap.indent(textwrap.fill(msg.text, 80), "     "))
    print(f"\nSent: {history.sent}, Received: {history.received}")


def manage_contacts(service: SyncService, args: argparse.Namespace) -> int:
    resolver = service.resolver

    if args.contacts_command == "add":
        identifier = normalize_identifier(args.identifier)
        resolver.add_manual(identifier, args.name)
        print(f"Added {identifier} -> {args.name}")

    elif args.contacts_command == "remove":
        identifier = normalize_identifier(args.identifier)
        if not resolver.remove_manual(identifier):
            print(f"No manual contact for {identifier}")
            return 1
        print(f"Removed {identifier}")

    elif args.contacts_command == "list":
        info = service.contacts.info()
        if info is None:
            print("Contacts cache: not found")
        else:
            print(
                f"Contacts cache: {info.contacts} contacts, {info.phones} phones, "
                f"{info.emails} emails (updated {info.last_updated.isoformat()})"
            )
        manual = service.contacts.manual_contacts()
        print(f"\nManual contacts ({len(manual)}):")
        for identifier, name in sorted(manual.items()):
            print(f"  {identifier:30s} {name}")

    elif args.contacts_command == "test":
        print(f"{args.identifier} -> {resolver.resolve(args.identifier)}")

    else:
        print("Usage: contacts {add,remove,list,test}")
        return 1

    return 0


def dispatch(service: SyncService, args: argparse.Namespace) -> int:
    """Run the chosen command and return the process exit code."""
    if args.command == "run-once":
        return asyncio.run(run_once(service))

    if args.command == "service":
        return asyncio.run(run_service(service))

    if args.command == "status":
        show_status(service)

    elif args.command == "track":
        conv = service.track(args.identifier, args.name)
        print(f"Tracking {conv.display_name} ({conv.chat_identifier})")

    elif args.command == "untrack":
        if not service.untrack(args.identifier):
            print(f"Not tracked: {args.identifier}")
            return 1
        print(f"Stopped tracking {args.identifier}")

    elif args.command == "reset":
        if not service.reset(args.identifier):
            print(f"Not tracked: {args.identifier}")
            return 1
        print(f"Watermark cleared for {args.identifier}")

    elif args.command == "contacts":
        return manage_contacts(service, args)

    elif args.command == "list":
        list_conversations(service, args)

    elif args.command == "messages":
        show_messages(service, args)

    elif args.command == "test-email":
        gmail_id = service.send_test_email()
        print(f"Test email sent (id {gmail_id})")

    return 0


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        sys.exit(1)

    settings = ImessageSyncSettings()
    setup_logging("DEBUG" if args.verbose else settings.log_level)

    service = SyncService(settings)

    try:
        sys.exit(dispatch(service, args))
    except StartupError as e:
        print(f"\nStartup check failed: {e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        print(f"\nError: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
