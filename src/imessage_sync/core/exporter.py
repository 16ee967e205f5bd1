"""imessage-exporter adapter: runs the export as a subprocess and parses its HTML output."""

from __future__ import annotations

import asyncio
import hashlib
import logging
import re
from collections.abc import Sequence
from datetime import UTC, datetime, tzinfo
from pathlib import Path

from bs4 import BeautifulSoup, Tag

from imessage_sync.core.exceptions import ParseError
from imessage_sync.core.models import Conversation, ExportResult, Message
from imessage_sync.core.phone import format_phone, is_email

logger = logging.getLogger(__name__)

# e.g. "Sep 01, 2024  3:02:25 PM"
_TIMESTAMP_RE = re.compile(r"([A-Z][a-z]{2} \d{1,2}, \d{4})\s+(\d{1,2}:\d{2}:\d{2}\s*[AP]M)")
_TIMESTAMP_FORMAT = "%b %d, %Y %I:%M:%S %p"
_EXPORTED_COUNT_RE = re.compile(r"Exported (\d+) messages")


class MessageExporter:
    """Thin async wrapper around the ``imessage-exporter`` binary.

    Date-range flags are never passed: the exporter's own filtering has been
    observed to drop recent messages, so callers export broadly and filter
    client-side.
    """

    def __init__(
        self,
        binary_path: str = "imessage-exporter",
        *,
        export_format: str = "html",
        copy_attachments: bool = False,
        tz: tzinfo | None = None,
    ) -> None:
        self._binary_path = binary_path
        self._format = export_format
        self._copy_attachments = copy_attachments
        # Exporter timestamps are wall-clock in this zone; None means the host's zone
        self._tz = tz

    async def check_installation(self) -> bool:
        """Return True when the exporter binary runs and exits 0."""
        try:
            proc = await asyncio.create_subprocess_exec(
                self._binary_path,
                "--version",
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError:
            return False
        return await proc.wait() == 0

    async def export(self, participants: Sequence[str], output_dir: Path) -> ExportResult:
        """Export the conversations involving ``participants`` into ``output_dir``.

        Never raises for process failures; they are reported in the result.
        """
        args = self._build_args(participants, output_dir)
        logger.debug("Running %s %s", self._binary_path, " ".join(args))

        try:
            proc = await asyncio.create_subprocess_exec(
                self._binary_path,
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            return ExportResult(
                success=False,
                output_path=str(output_dir),
                error=f"Failed to execute {self._binary_path}: {e}",
            )

        stdout, stderr = await proc.communicate()
        output = stdout.decode("utf-8", errors="replace")

        if proc.returncode != 0:
            error = stderr.decode("utf-8", errors="replace").strip()
            return ExportResult(
                success=False,
                output_path=str(output_dir),
                error=f"{self._binary_path} exited with code {proc.returncode}: {error}",
            )

        match = _EXPORTED_COUNT_RE.search(output)
        return ExportResult(
            success=True,
            output_path=str(output_dir),
            message_count=int(match.group(1)) if match else 0,
        )

    def _build_args(self, participants: Sequence[str], output_dir: Path) -> list[str]:
        args = ["--format", self._format, "--export-path", str(output_dir)]
        if participants:
            args += ["--conversation-filter", ",".join(participants)]
        if not self._copy_attachments:
            args += ["--copy-method", "disabled"]
        return args

    def parse(self, export_dir: Path) -> dict[str, list[Message]]:
        """Parse every exported HTML file into messages keyed by conversation id.

        A missing or empty export directory yields an empty mapping.

        Raises:
            ParseError: If an exported file cannot be read or parsed.
        """
        conversations: dict[str, list[Message]] = {}
        if not export_dir.is_dir():
            return conversations

        for path in sorted(export_dir.glob("*.html")):
            messages = self.parse_file(path)
            if messages:
                conversations.setdefault(path.stem, []).extend(messages)

        return conversations

    def parse_file(self, path: Path) -> list[Message]:
        """Parse a single exported conversation file.

        The conversation id is the file stem (participants joined by ", ").
        """
        try:
            content = path.read_text(encoding="utf-8")
            soup = BeautifulSoup(content, "lxml")
        except Exception as e:
            raise ParseError(f"Failed to parse {path.name}: {e}") from e

        chat_id = path.stem
        messages: list[Message] = []
        seen_keys: dict[str, int] = {}

        for element in soup.select(".message"):
            message = self._parse_message_element(element, chat_id, seen_keys)
            if message:
                messages.append(message)

        return messages

    def summarize_conversations(self, export_dir: Path) -> list[Conversation]:
        """Summarize each conversation in an export, most recently active first."""
        summaries: list[Conversation] = []

        for chat_id, messages in self.parse(export_dir).items():
            participants = tuple(p.strip() for p in chat_id.split(", "))
            summaries.append(
                Conversation(
                    chat_identifier=chat_id,
                    display_name=_display_name(participants),
                    participants=participants,
                    last_message_date=max(m.timestamp for m in messages),
                    message_count=len(messages),
                    is_group=len(participants) > 1,
                )
            )

        return sorted(summaries, key=lambda c: c.last_message_date, reverse=True)

    def _parse_message_element(
        self, element: Tag, chat_id: str, seen_keys: dict[str, int]
    ) -> Message | None:
        anchor = element.select_one(".timestamp a")
        stamp_el = anchor or element.select_one(".timestamp")
        timestamp = self._parse_timestamp(stamp_el.get_text(" ") if stamp_el else "")
        if timestamp is None:
            logger.warning("Skipping message in %s with unreadable timestamp", chat_id)
            return None

        bubble = element.select_one(".bubble")
        text = bubble.get_text().strip() if bubble else ""
        if not text:
            # Attachment-only messages carry no forwardable text
            return None

        sender_el = element.select_one(".sender")
        sender = sender_el.get_text().strip() if sender_el else ""

        guid = _extract_guid(element, anchor)
        if not guid:
            key = f"{chat_id}|{timestamp.isoformat()}|{sender}|{text}"
            occurrence = seen_keys.get(key, 0)
            seen_keys[key] = occurrence + 1
            guid = hashlib.sha1(f"{key}|{occurrence}".encode()).hexdigest()[:24]

        return Message(
            guid=guid,
            text=text,
            timestamp=timestamp,
            is_from_me=element.select_one(".sent") is not None,
            sender=sender or "unknown",
            conversation_id=chat_id,
        )

    def _parse_timestamp(self, text: str) -> datetime | None:
        match = _TIMESTAMP_RE.search(text)
        if not match:
            return None
        clock = match.group(2).replace(" ", "")
        try:
            naive = datetime.strptime(
                f"{match.group(1)} {clock[:-2]} {clock[-2:]}", _TIMESTAMP_FORMAT
            )
        except ValueError:
            return None
        local = naive.replace(tzinfo=self._tz) if self._tz else naive.astimezone()
        return local.astimezone(UTC)


def _extract_guid(element: Tag, anchor: Tag | None) -> str | None:
    """Pull the exporter's message GUID from the element id or reply anchor."""
    for node in (element.select_one(".sent[id], .received[id]"), element):
        if node is not None and node.get("id"):
            return str(node["id"])

    if anchor is not None:
        href = str(anchor.get("href", ""))
        if href.startswith("#r-"):
            return href[3:]

    return None


def _display_name(participants: tuple[str, ...]) -> str:
    if not participants:
        return "Unknown"
    if len(participants) > 1:
        return f"Group ({len(participants)} people)"

    participant = participants[0]
    if is_email(participant) or not re.fullmatch(r"\+?\d+", participant):
        return participant
    return format_phone(participant)
