"""Delta extraction: which archived messages are new since the last committed cycle."""

from __future__ import annotations

import asyncio
import logging
import tempfile
from collections.abc import Callable, Iterable
from datetime import UTC, datetime, timedelta
from pathlib import Path

from imessage_sync.config.app_config import TrackedConversation
from imessage_sync.core.exceptions import ExportError
from imessage_sync.core.exporter import MessageExporter
from imessage_sync.core.models import Delta, Message
from imessage_sync.storage.watermarks import WatermarkState

logger = logging.getLogger(__name__)

DEFAULT_SKEW_BUFFER = timedelta(minutes=2)
DEFAULT_FIRST_SYNC_LOOKBACK = timedelta(hours=24)


class DeltaExtractor:
    """Export one conversation and keep only messages past its buffered watermark.

    The filter is ``timestamp > watermark - skew_buffer``: the buffer absorbs
    clock skew between the exporter and wall-clock time. Messages inside the
    buffer that an earlier committed cycle already processed are recognized by
    GUID and dropped, so only a lost commit can cause redelivery.
    """

    def __init__(
        self,
        exporter: MessageExporter,
        export_root: Path,
        *,
        skew_buffer: timedelta = DEFAULT_SKEW_BUFFER,
        first_sync_lookback: timedelta = DEFAULT_FIRST_SYNC_LOOKBACK,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._exporter = exporter
        self._export_root = export_root
        self._skew_buffer = skew_buffer
        self._first_sync_lookback = first_sync_lookback
        self._clock = clock or (lambda: datetime.now(UTC))

    @property
    def skew_buffer(self) -> timedelta:
        return self._skew_buffer

    def boundary(self, watermark: datetime | None) -> datetime:
        """Exclusive lower bound on message timestamps for this cycle."""
        if watermark is None:
            return self._clock() - self._first_sync_lookback
        return watermark - self._skew_buffer

    async def extract(self, conversation: TrackedConversation, state: WatermarkState) -> Delta:
        """Return the conversation's new messages, split by direction, oldest first.

        Raises:
            ExportError: The exporter could not run or exited non-zero.
            ParseError: The export could not be parsed.
        """
        messages = await self.export_conversation(conversation)

        boundary = self.boundary(state.watermark)
        logger.debug(
            "Filtering %d message(s) for %s newer than %s (watermark %s)",
            len(messages),
            conversation.display_name,
            boundary.isoformat(),
            state.watermark.isoformat() if state.watermark else "never",
        )

        new_messages = self.filter_new(messages, boundary, state.seen_ids)
        incoming = tuple(m for m in new_messages if not m.is_from_me)
        outgoing = tuple(m for m in new_messages if m.is_from_me)

        logger.debug(
            "Filtered to %d new message(s) (%d received, %d sent)",
            len(new_messages),
            len(incoming),
            len(outgoing),
        )
        return Delta(incoming=incoming, outgoing=outgoing)

    def filter_new(
        self,
        messages: Iterable[Message],
        boundary: datetime,
        seen_ids: frozenset[str] = frozenset(),
    ) -> list[Message]:
        """Keep messages strictly after ``boundary`` that weren't already processed."""
        kept: list[Message] = []
        for msg in messages:
            is_new = msg.timestamp > boundary and msg.guid not in seen_ids
            if logger.isEnabledFor(logging.DEBUG):
                direction = "SENT" if msg.is_from_me else "RECEIVED"
                preview = msg.text[:30] + ("..." if len(msg.text) > 30 else "")
                logger.debug(
                    "  %s %s %s: %r",
                    msg.timestamp.isoformat(),
                    "NEW" if is_new else "OLD",
                    direction,
                    preview,
                )
            if is_new:
                kept.append(msg)
        return kept

    async def export_conversation(self, conversation: TrackedConversation) -> list[Message]:
        """Export and parse one conversation's full history, oldest first.

        Raises:
            ExportError: The exporter could not run or exited non-zero.
            ParseError: The export could not be parsed.
        """
        name = conversation.display_name
        participants = conversation.participants or [conversation.chat_identifier]
        try:
            self._export_root.mkdir(parents=True, exist_ok=True)
            tmp = tempfile.TemporaryDirectory(
                dir=self._export_root, prefix="sync_", ignore_cleanup_errors=True
            )
        except OSError as e:
            raise ExportError(f"Cannot create export directory for {name}: {e}") from e

        with tmp as export_dir:
            result = await self._exporter.export(participants, Path(export_dir))
            if not result.success:
                raise ExportError(f"Export failed for {name}: {result.error}")

            parsed = await asyncio.to_thread(self._exporter.parse, Path(export_dir))

        by_guid: dict[str, Message] = {}
        for msg in select_chat(conversation, parsed):
            by_guid.setdefault(msg.guid, msg)

        return sorted(by_guid.values(), key=lambda m: m.timestamp)


def select_chat(
    conversation: TrackedConversation, parsed: dict[str, list[Message]]
) -> list[Message]:
    """Pick the conversation's own chat out of a participant-filtered export.

    ``--conversation-filter`` also exports every group chat that includes one of
    the participants. The chat is matched by its identifier, then by the same
    participant set in any order. Only when nothing matches are all exported
    chats merged.
    """
    if conversation.chat_identifier in parsed:
        return parsed[conversation.chat_identifier]

    wanted = _participant_key(conversation.chat_identifier)
    for chat_id, messages in parsed.items():
        if _participant_key(chat_id) == wanted:
            return messages

    if parsed:
        logger.warning(
            "No exported chat matches %s (found %s), merging all of them",
            conversation.chat_identifier,
            ", ".join(repr(k) for k in sorted(parsed)),
        )
    return [msg for messages in parsed.values() for msg in messages]


def _participant_key(chat_id: str) -> frozenset[str]:
    return frozenset(p.strip().lower() for p in chat_id.split(",") if p.strip())
