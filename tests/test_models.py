"""Unit tests for imessage_sync.core.models dataclasses."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import FrozenInstanceError
from datetime import datetime

import pytest

from imessage_sync.core.models import (
    ConversationResult,
    CycleResult,
    Delta,
    DeliveryStatus,
    Message,
    OutboundEmail,
)

# ---------------------------------------------------------------------------
# Message
# ---------------------------------------------------------------------------


class TestMessage:
    """Message is a frozen record of one archived message."""

    def test_is_frozen(self, make_message: Callable[..., Message]) -> None:
        msg = make_message("g1", 0)
        with pytest.raises(FrozenInstanceError):
            msg.text = "changed"  # type: ignore[misc]

    def test_equality_by_value(self, make_message: Callable[..., Message]) -> None:
        assert make_message("g1", 0) == make_message("g1", 0)


# ---------------------------------------------------------------------------
# Delta
# ---------------------------------------------------------------------------


class TestDelta:
    """Delta partitions new messages by direction."""

    def test_empty(self) -> None:
        delta = Delta()
        assert len(delta) == 0
        assert not delta
        assert delta.newest is None
        assert delta.messages == ()

    def test_messages_merged_in_time_order(self, make_message: Callable[..., Message]) -> None:
        a = make_message("a", 1)
        b = make_message("b", 2, is_from_me=True)
        c = make_message("c", 3)
        delta = Delta(incoming=(a, c), outgoing=(b,))
        assert [m.guid for m in delta.messages] == ["a", "b", "c"]
        assert len(delta) == 3

    def test_newest_can_be_outgoing(self, make_message: Callable[..., Message]) -> None:
        delta = Delta(
            incoming=(make_message("a", 1),),
            outgoing=(make_message("b", 5, is_from_me=True),),
        )
        assert delta.newest is not None
        assert delta.newest.guid == "b"


# ---------------------------------------------------------------------------
# OutboundEmail / DeliveryStatus
# ---------------------------------------------------------------------------


class TestOutboundEmail:
    def test_defaults(self) -> None:
        email = OutboundEmail(
            subject="s", html_body="<p>h</p>", text_body="t", message_id="<m@x>",
            conversation_id="c",
        )
        assert email.to == ""
        assert email.in_reply_to is None
        assert email.references is None


class TestDeliveryStatus:
    def test_values(self) -> None:
        assert DeliveryStatus.SENT == "sent"
        assert DeliveryStatus.FAILED == "failed"
        assert DeliveryStatus.SIMULATED == "simulated"


# ---------------------------------------------------------------------------
# CycleResult
# ---------------------------------------------------------------------------


class TestCycleResult:
    """CycleResult aggregates per-conversation counters."""

    def test_totals(self, base_time: datetime) -> None:
        result = CycleResult(started_at=base_time)
        result.conversations.append(
            ConversationResult("a", "A", new_messages=3, sent=2, failed=1)
        )
        result.conversations.append(ConversationResult("b", "B", new_messages=1, sent=1))
        assert result.total_new == 4
        assert result.total_sent == 3
        assert result.total_failed == 1

    def test_errors_lists_only_failed_conversations(self, base_time: datetime) -> None:
        result = CycleResult(started_at=base_time)
        result.conversations.append(ConversationResult("a", "A", error="export failed"))
        result.conversations.append(ConversationResult("b", "B"))
        assert result.errors == [("a", "export failed")]

    def test_defaults(self, base_time: datetime) -> None:
        result = CycleResult(started_at=base_time)
        assert result.committed is False
        assert result.finished_at is None
        assert result.conversations == []
