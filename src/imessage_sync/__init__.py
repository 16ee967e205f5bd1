"""iMessage Sync - Forward new iMessages to email, incrementally and threaded."""

from imessage_sync.core.models import (
    Conversation,
    ConversationResult,
    CycleResult,
    Delta,
    DeliveryStatus,
    Message,
    MessageHistory,
    OutboundEmail,
    WatermarkUpdate,
)
from imessage_sync.pipeline.cycle import SyncCycle
from imessage_sync.pipeline.scheduler import Scheduler, TickOutcome
from imessage_sync.pipeline.service import SyncService

__all__ = [
    "Conversation",
    "ConversationResult",
    "CycleResult",
    "Delta",
    "DeliveryStatus",
    "Message",
    "MessageHistory",
    "OutboundEmail",
    "Scheduler",
    "SyncCycle",
    "SyncService",
    "TickOutcome",
    "WatermarkUpdate",
]
