"""Tests for MessageExporter: subprocess invocation and HTML parsing."""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from imessage_sync.core.exceptions import ParseError
from imessage_sync.core.exporter import MessageExporter

CONVERSATION_HTML = """<!DOCTYPE html>
<html><body>
<div class="message">
  <div class="received" id="p:0/AAAA-1111">
    <p><span class="timestamp"><a title="Reply" href="#r-AAAA-1111">Sep 01, 2024  3:02:25 PM</a></span>
    <span class="sender">+14155550100</span></p>
    <div class="message_part"><span class="bubble">Hey, are you around?</span></div>
  </div>
</div>
<div class="message">
  <div class="sent">
    <p><span class="timestamp"><a title="Reply" href="#r-BBBB-2222">Sep 01, 2024  3:05:00 PM (Read by them after 1 minute)</a></span>
    <span class="sender">Me</span></p>
    <div class="message_part"><span class="bubble">Yes, what's up?</span></div>
  </div>
</div>
<div class="message">
  <div class="received">
    <p><span class="timestamp">Sep 01, 2024  3:06:10 PM</span>
    <span class="sender">+14155550100</span></p>
    <div class="message_part"><span class="bubble">Lunch?</span></div>
  </div>
</div>
<div class="message">
  <div class="received">
    <p><span class="timestamp">Sep 01, 2024  3:07:00 PM</span>
    <span class="sender">+14155550100</span></p>
    <div class="message_part"><span class="bubble">   </span></div>
  </div>
</div>
<div class="message">
  <div class="received">
    <p><span class="timestamp">yesterday</span>
    <span class="sender">+14155550100</span></p>
    <div class="message_part"><span class="bubble">no date</span></div>
  </div>
</div>
</body></html>
"""


@pytest.fixture
def exporter() -> MessageExporter:
    return MessageExporter("imessage-exporter", tz=UTC)


@pytest.fixture
def export_dir(tmp_path: Path) -> Path:
    """An export directory holding one direct and one group conversation."""
    directory = tmp_path / "export"
    directory.mkdir()
    (directory / "+14155550100.html").write_text(CONVERSATION_HTML, encoding="utf-8")
    (directory / "+14155550100, bob@example.com.html").write_text(
        CONVERSATION_HTML.replace("Sep 01", "Sep 02"), encoding="utf-8"
    )
    return directory


def _mock_process(returncode: int, stdout: bytes = b"", stderr: bytes = b"") -> MagicMock:
    proc = MagicMock()
    proc.returncode = returncode
    proc.communicate = AsyncMock(return_value=(stdout, stderr))
    proc.wait = AsyncMock(return_value=returncode)
    return proc


# ---------- subprocess ----------


class TestBuildArgs:
    def test_filter_and_attachments_disabled(self, exporter: MessageExporter) -> None:
        args = exporter._build_args(["+14155550100", "bob@example.com"], Path("/tmp/out"))
        assert args == [
            "--format", "html",
            "--export-path", "/tmp/out",
            "--conversation-filter", "+14155550100,bob@example.com",
            "--copy-method", "disabled",
        ]

    def test_no_participants_exports_everything(self) -> None:
        exporter = MessageExporter("imessage-exporter", copy_attachments=True)
        args = exporter._build_args([], Path("/tmp/out"))
        assert "--conversation-filter" not in args
        assert "--copy-method" not in args


class TestExport:
    """export() never raises for process failures."""

    @pytest.mark.asyncio
    async def test_success_reads_message_count(
        self, exporter: MessageExporter, tmp_path: Path
    ) -> None:
        proc = _mock_process(0, stdout=b"Exported 42 messages to /tmp/out\n")
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)) as exec_mock:
            result = await exporter.export(["+14155550100"], tmp_path)

        assert result.success is True
        assert result.message_count == 42
        assert exec_mock.call_args.args[0] == "imessage-exporter"

    @pytest.mark.asyncio
    async def test_nonzero_exit(self, exporter: MessageExporter, tmp_path: Path) -> None:
        proc = _mock_process(2, stderr=b"database locked")
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
            result = await exporter.export(["+14155550100"], tmp_path)

        assert result.success is False
        assert "database locked" in (result.error or "")

    @pytest.mark.asyncio
    async def test_missing_binary(self, exporter: MessageExporter, tmp_path: Path) -> None:
        with patch(
            "asyncio.create_subprocess_exec", AsyncMock(side_effect=FileNotFoundError("nope"))
        ):
            result = await exporter.export(["+14155550100"], tmp_path)

        assert result.success is False
        assert "Failed to execute" in (result.error or "")


class TestCheckInstallation:
    @pytest.mark.asyncio
    async def test_installed(self, exporter: MessageExporter) -> None:
        with patch("asyncio.create_subprocess_exec", AsyncMock(return_value=_mock_process(0))):
            assert await exporter.check_installation() is True

    @pytest.mark.asyncio
    async def test_not_installed(self, exporter: MessageExporter) -> None:
        with patch("asyncio.create_subprocess_exec", AsyncMock(side_effect=OSError("nope"))):
            assert await exporter.check_installation() is False


# ---------- parsing ----------


class TestParseFile:
    """parse_file() turns exported HTML into Message records."""

    def test_parses_messages_with_text(
        self, exporter: MessageExporter, export_dir: Path
    ) -> None:
        messages = exporter.parse_file(export_dir / "+14155550100.html")
        assert [m.text for m in messages] == ["Hey, are you around?", "Yes, what's up?", "Lunch?"]

    def test_direction_and_sender(self, exporter: MessageExporter, export_dir: Path) -> None:
        received, sent, _ = exporter.parse_file(export_dir / "+14155550100.html")
        assert received.is_from_me is False
        assert received.sender == "+14155550100"
        assert sent.is_from_me is True

    def test_timestamps_converted_to_utc(
        self, exporter: MessageExporter, export_dir: Path
    ) -> None:
        first = exporter.parse_file(export_dir / "+14155550100.html")[0]
        assert first.timestamp == datetime(2024, 9, 1, 15, 2, 25, tzinfo=UTC)

    def test_guid_from_element_id_then_reply_anchor(
        self, exporter: MessageExporter, export_dir: Path
    ) -> None:
        first, second, _ = exporter.parse_file(export_dir / "+14155550100.html")
        assert first.guid == "p:0/AAAA-1111"
        assert second.guid == "BBBB-2222"

    def test_fallback_guid_is_deterministic(
        self, exporter: MessageExporter, export_dir: Path
    ) -> None:
        path = export_dir / "+14155550100.html"
        assert exporter.parse_file(path)[2].guid == exporter.parse_file(path)[2].guid

    def test_conversation_id_is_file_stem(
        self, exporter: MessageExporter, export_dir: Path
    ) -> None:
        messages = exporter.parse_file(export_dir / "+14155550100.html")
        assert {m.conversation_id for m in messages} == {"+14155550100"}

    def test_unreadable_file_raises(self, exporter: MessageExporter, tmp_path: Path) -> None:
        with pytest.raises(ParseError):
            exporter.parse_file(tmp_path / "missing.html")


class TestParse:
    def test_keys_by_conversation(self, exporter: MessageExporter, export_dir: Path) -> None:
        parsed = exporter.parse(export_dir)
        assert set(parsed) == {"+14155550100", "+14155550100, bob@example.com"}

    def test_missing_directory(self, exporter: MessageExporter, tmp_path: Path) -> None:
        assert exporter.parse(tmp_path / "nope") == {}


class TestSummarizeConversations:
    def test_most_recent_first(self, exporter: MessageExporter, export_dir: Path) -> None:
        summaries = exporter.summarize_conversations(export_dir)

        assert [s.chat_identifier for s in summaries] == [
            "+14155550100, bob@example.com",
            "+14155550100",
        ]
        group, direct = summaries
        assert group.is_group is True
        assert group.participants == ("+14155550100", "bob@example.com")
        assert group.display_name == "Group (2 people)"
        assert direct.display_name == "+1 (415) 555-0100"
        assert direct.message_count == 3
