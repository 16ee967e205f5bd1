"""Dataclasses for the iMessage Sync domain model."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


@dataclass(frozen=True)
class Message:
    """A single archived message, rebuilt from the export every cycle."""

    guid: str
    text: str
    timestamp: datetime
    is_from_me: bool
    sender: str
    conversation_id: str


@dataclass(frozen=True)
class ExportResult:
    """Outcome of one exporter invocation."""

    success: bool
    output_path: str
    message_count: int = 0
    error: str | None = None


@dataclass(frozen=True)
class Conversation:
    """Summary of a conversation found in an export."""

    chat_identifier: str
    display_name: str
    participants: tuple[str, ...]
    last_message_date: datetime
    message_count: int
    is_group: bool


@dataclass(frozen=True)
class MessageHistory:
    """Recent messages of one conversation for display, newest first.

    ``sent`` and ``received`` count the whole day window; ``total`` counts the
    messages matching the direction filter before the limit was applied.
    """

    chat_identifier: str
    display_name: str
    messages: tuple[Message, ...]
    total: int
    sent: int
    received: int


@dataclass(frozen=True)
class Delta:
    """Messages newer than a conversation's watermark, oldest first."""

    incoming: tuple[Message, ...] = ()
    outgoing: tuple[Message, ...] = ()

    @property
    def messages(self) -> tuple[Message, ...]:
        return tuple(sorted(self.incoming + self.outgoing, key=lambda m: m.timestamp))

    @property
    def newest(self) -> Message | None:
        msgs = self.messages
        return msgs[-1] if msgs else None

    def __len__(self) -> int:
        return len(self.incoming) + len(self.outgoing)


@dataclass(frozen=True)
class OutboundEmail:
    """One email built from one incoming message."""

    subject: str
    html_body: str
    text_body: str
    message_id: str
    conversation_id: str
    to: str = ""
    in_reply_to: str | None = None
    references: tuple[str, ...] | None = None


class DeliveryStatus(str, Enum):
    SENT = "sent"
    FAILED = "failed"
    SIMULATED = "simulated"


@dataclass(frozen=True)
class WatermarkUpdate:
    """Pending watermark advance for one conversation."""

    watermark: datetime
    last_message_id: str | None = None
    recent_message_ids: tuple[str, ...] = ()


@dataclass
class ConversationResult:
    """Mutable per-conversation counters for one cycle."""

    chat_identifier: str
    display_name: str
    new_messages: int = 0
    incoming: int = 0
    outgoing: int = 0
    sent: int = 0
    failed: int = 0
    simulated: int = 0
    error: str | None = None


@dataclass
class CycleResult:
    """Aggregate outcome of one sync cycle."""

    started_at: datetime
    finished_at: datetime | None = None
    conversations: list[ConversationResult] = field(default_factory=list)
    committed: bool = False
    simulation: bool = False

    @property
    def total_new(self) -> int:
        return sum(c.new_messages for c in self.conversations)

    @property
    def total_sent(self) -> int:
        return sum(c.sent for c in self.conversations)

    @property
    def total_failed(self) -> int:
        return sum(c.failed for c in self.conversations)

    @property
    def errors(self) -> list[tuple[str, str]]:
        return [(c.chat_identifier, c.error) for c in self.conversations if c.error]
