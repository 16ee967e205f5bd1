"""Persisted application config: tracked conversations and sync settings."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _as_utc(value: datetime | None) -> datetime | None:
    """Timestamps written without an offset are taken as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class TrackedConversation(BaseModel):
    """A conversation the user asked to forward, with its sync watermark."""

    # Unknown keys survive a load/save round-trip
    model_config = ConfigDict(extra="allow")

    chat_identifier: str
    display_name: str
    participants: list[str] = Field(default_factory=list)
    is_group: bool = False
    added_date: datetime = Field(default_factory=lambda: datetime.now(UTC))
    last_sync_date: datetime | None = None
    last_message_id: str | None = None
    recent_message_ids: list[str] = Field(default_factory=list)

    @field_validator("added_date", "last_sync_date")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        return _as_utc(value)


class SyncConfig(BaseModel):
    model_config = ConfigDict(extra="allow")

    tracked_conversations: list[TrackedConversation] = Field(default_factory=list)
    sync_interval: int = 1  # minutes
    last_global_sync: datetime | None = None
    enable_auto_sync: bool = False
    log_level: Literal["error", "warn", "info", "debug"] = "info"

    @field_validator("last_global_sync")
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        return _as_utc(value)

    def find(self, chat_identifier: str) -> TrackedConversation | None:
        for conv in self.tracked_conversations:
            if conv.chat_identifier == chat_identifier:
                return conv
        return None


class EmailConfig(BaseModel):
    model_config = ConfigDict(extra="allow")

    enabled: bool = True
    from_name: str = "iMessage Sync"
    recipient_email: str | None = None


class ExportConfig(BaseModel):
    model_config = ConfigDict(extra="allow")

    format: Literal["html", "txt"] = "html"
    attachments: bool = False


class AppConfig(BaseModel):
    """Top-level document stored in the config file."""

    model_config = ConfigDict(extra="allow")

    sync: SyncConfig = Field(default_factory=SyncConfig)
    email: EmailConfig = Field(default_factory=EmailConfig)
    export: ExportConfig = Field(default_factory=ExportConfig)
