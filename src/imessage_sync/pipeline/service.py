"""Wires settings to the sync components and exposes the operator actions."""

from __future__ import annotations

import logging
import os
import tempfile
from datetime import UTC, datetime, timedelta
from pathlib import Path

from imessage_sync.config.app_config import AppConfig, TrackedConversation
from imessage_sync.config.settings import ImessageSyncSettings
from imessage_sync.core.exceptions import ExportError, StartupError
from imessage_sync.core.exporter import MessageExporter
from imessage_sync.core.gmail_transport import GmailTransport
from imessage_sync.core.identity import IdentityResolver
from imessage_sync.core.models import Conversation, CycleResult, MessageHistory
from imessage_sync.core.phone import normalize_identifier
from imessage_sync.core.thread_builder import ThreadBuilder
from imessage_sync.pipeline.cycle import SyncCycle
from imessage_sync.pipeline.dispatcher import DeliveryDispatcher, FailureHook
from imessage_sync.pipeline.extractor import DeltaExtractor
from imessage_sync.pipeline.scheduler import Scheduler
from imessage_sync.storage.config_store import JsonConfigStore
from imessage_sync.storage.contact_cache import ContactCache
from imessage_sync.storage.watermarks import WatermarkStore

logger = logging.getLogger(__name__)


class SyncService:
    """Builds the pipeline from settings and the persisted config.

    Components that touch the network or the address book are created lazily,
    so read-only commands (status, track, reset) never need credentials.
    """

    def __init__(
        self,
        settings: ImessageSyncSettings | None = None,
        *,
        on_failure: FailureHook | None = None,
    ) -> None:
        self._settings = settings or ImessageSyncSettings()
        self._on_failure = on_failure

        self.config_store = JsonConfigStore(self._settings.config_path)
        self.watermarks = WatermarkStore(self.config_store)

        # Components initialized lazily
        self._contacts: ContactCache | None = None
        self._resolver: IdentityResolver | None = None
        self._exporter: MessageExporter | None = None
        self._transport: GmailTransport | None = None
        self._cycle: SyncCycle | None = None

    @property
    def settings(self) -> ImessageSyncSettings:
        return self._settings

    @property
    def contacts(self) -> ContactCache:
        if self._contacts is None:
            self._contacts = ContactCache(
                self._settings.contacts_cache_path, self._settings.manual_contacts_path
            )
            self._contacts.load()
            max_age = timedelta(days=self._settings.contacts_cache_max_age_days)
            if not self._contacts.loaded:
                logger.warning("No contacts cache found, names will fall back to identifiers")
            elif self._contacts.is_stale(max_age):
                logger.warning("Contacts cache is older than %s days", max_age.days)
        return self._contacts

    @property
    def resolver(self) -> IdentityResolver:
        if self._resolver is None:
            self._resolver = IdentityResolver(self.contacts)
        return self._resolver

    def exporter(self, config: AppConfig | None = None) -> MessageExporter:
        if self._exporter is None:
            config = config or self.config_store.load()
            self._exporter = MessageExporter(
                self._settings.exporter_binary,
                export_format=config.export.format,
                copy_attachments=config.export.attachments,
            )
        return self._exporter

    def transport(self, config: AppConfig | None = None) -> GmailTransport | None:
        """The Gmail transport, or None when email is disabled in the config."""
        config = config or self.config_store.load()
        if not config.email.enabled:
            return None
        if self._transport is None:
            self._transport = GmailTransport(
                self._settings.credentials_path,
                self._settings.token_path,
                recipient=config.email.recipient_email or self._settings.recipient_email,
                from_name=config.email.from_name,
                sender_email=self._settings.sender_email,
            )
        return self._transport

    # ---------- startup ----------

    async def check_startup(self) -> None:
        """Verify Messages database access and the exporter binary.

        Raises:
            StartupError: With a remediation hint for the operator.
        """
        db_path = self._settings.messages_db_path
        if not os.access(db_path, os.R_OK):
            raise StartupError(
                f"Cannot read {db_path}. Grant Full Disk Access to your terminal in "
                "System Settings > Privacy & Security > Full Disk Access."
            )

        if not await self.exporter().check_installation():
            raise StartupError(
                f"{self._settings.exporter_binary} is not installed. "
                "Install it with: cargo install imessage-exporter"
            )

    # ---------- sync ----------

    def build_cycle(self) -> SyncCycle:
        if self._cycle is None:
            self._settings.ensure_directories()
            config = self.config_store.load()
            extractor = DeltaExtractor(
                self.exporter(config),
                self._settings.export_root,
                skew_buffer=self._settings.skew_buffer,
                first_sync_lookback=self._settings.first_sync_lookback,
            )
            dispatcher = DeliveryDispatcher(self.transport(config), on_failure=self._on_failure)
            self._cycle = SyncCycle(
                self.config_store,
                self.watermarks,
                extractor,
                self.resolver,
                ThreadBuilder(self.resolver),
                dispatcher,
            )
        return self._cycle

    async def run_once(self) -> CycleResult:
        """Run one cycle. Raises ``WatermarkCommitError`` if the commit fails."""
        return await self.build_cycle().run()

    def build_scheduler(self) -> Scheduler:
        config = self.config_store.load()
        cycle = self.build_cycle()
        return Scheduler(cycle.run, timedelta(minutes=config.sync.sync_interval))

    # ---------- tracking ----------

    def track(self, identifier: str, display_name: str | None = None) -> TrackedConversation:
        """Start tracking a conversation. Group chats use ``", "``-joined participants."""
        participants = [normalize_identifier(p.strip()) for p in identifier.split(",")]
        participants = [p for p in participants if p]
        chat_identifier = ", ".join(participants)
        is_group = len(participants) > 1

        if not display_name:
            display_name = self._default_name(participants)

        conversation = TrackedConversation(
            chat_identifier=chat_identifier,
            display_name=display_name,
            participants=participants,
            is_group=is_group,
            added_date=datetime.now(UTC),
        )
        self.config_store.add_tracked_conversation(conversation)
        logger.info("Tracking %s (%s)", display_name, chat_identifier)
        return conversation

    def untrack(self, identifier: str) -> bool:
        return self.config_store.remove_tracked_conversation(self._chat_identifier(identifier))

    def reset(self, identifier: str) -> bool:
        """Clear a conversation's watermark so the next cycle starts from the lookback."""
        return self.watermarks.reset(self._chat_identifier(identifier))

    def _default_name(self, participants: list[str]) -> str:
        return ", ".join(self.resolver.resolve(p) for p in participants)

    def _chat_identifier(self, identifier: str) -> str:
        parts = [normalize_identifier(p.strip()) for p in identifier.split(",")]
        return ", ".join(p for p in parts if p)

    # ---------- archive ----------

    async def list_conversations(self, *, include_groups: bool = True) -> list[Conversation]:
        """Export the whole archive once and summarize its conversations.

        Raises:
            ExportError: If the exporter fails.
        """
        self._settings.export_root.mkdir(parents=True, exist_ok=True)
        exporter = self.exporter()
        with tempfile.TemporaryDirectory(
            dir=self._settings.export_root, prefix="list_", ignore_cleanup_errors=True
        ) as export_dir:
            result = await exporter.export([], Path(export_dir))
            if not result.success:
                raise ExportError(f"Export failed: {result.error}")
            conversations = exporter.summarize_conversations(Path(export_dir))

        if not include_groups:
            conversations = [c for c in conversations if not c.is_group]
        return conversations

    async def recent_messages(
        self,
        identifier: str,
        *,
        days: int = 7,
        limit: int = 20,
        direction: str | None = None,
    ) -> MessageHistory:
        """Read-only view of a conversation's last ``days`` of messages.

        ``direction`` is ``"sent"``, ``"received"`` or None for both. Watermarks
        are neither read nor moved.

        Raises:
            ExportError: If the exporter fails.
            ValueError: On an unknown direction or a non-positive window.
        """
        if direction not in (None, "sent", "received"):
            raise ValueError(f"Unknown direction: {direction!r}")
        if days <= 0 or limit <= 0:
            raise ValueError("days and limit must be positive")

        chat_identifier = self._chat_identifier(identifier)
        participants = chat_identifier.split(", ")
        conversation = TrackedConversation(
            chat_identifier=chat_identifier,
            display_name=self._default_name(participants),
            participants=participants,
            is_group=len(participants) > 1,
        )

        extractor = DeltaExtractor(
            self.exporter(),
            self._settings.export_root,
            first_sync_lookback=timedelta(days=days),
        )
        messages = await extractor.export_conversation(conversation)
        window = extractor.filter_new(messages, extractor.boundary(None))
        window.reverse()

        sent = sum(1 for m in window if m.is_from_me)
        received = len(window) - sent
        if direction == "sent":
            window = [m for m in window if m.is_from_me]
        elif direction == "received":
            window = [m for m in window if not m.is_from_me]

        return MessageHistory(
            chat_identifier=chat_identifier,
            display_name=conversation.display_name,
            messages=tuple(window[:limit]),
            total=len(window),
            sent=sent,
            received=received,
        )

    # ---------- email ----------

    def send_test_email(self) -> str:
        """Initialize the transport interactively and send a test email."""
        config = self.config_store.load()
        if not config.email.enabled:
            raise StartupError("Email sending is disabled in the config (email.enabled=false)")

        self._settings.ensure_directories()
        transport = GmailTransport(
            self._settings.credentials_path,
            self._settings.token_path,
            recipient=config.email.recipient_email or self._settings.recipient_email,
            from_name=config.email.from_name,
            sender_email=self._settings.sender_email,
            interactive=True,
        )
        transport.initialize()
        return transport.send_test_email()
