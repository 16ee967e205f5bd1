"""Shared fixtures for iMessage Sync tests."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from imessage_sync.config.app_config import AppConfig, TrackedConversation
from imessage_sync.core.models import Message
from imessage_sync.storage.config_store import JsonConfigStore
from imessage_sync.storage.contact_cache import ContactCache

BASE_TIME = datetime(2024, 9, 1, 15, 0, 0, tzinfo=UTC)


def at(minutes: float) -> datetime:
    """A UTC timestamp ``minutes`` after BASE_TIME."""
    return BASE_TIME + timedelta(minutes=minutes)


@pytest.fixture
def base_time() -> datetime:
    """Fixed reference time for message timestamps."""
    return BASE_TIME


@pytest.fixture
def at_minute() -> Callable[[float], datetime]:
    """Helper mapping minutes after BASE_TIME to a UTC timestamp."""
    return at


@pytest.fixture
def make_message() -> Callable[..., Message]:
    """Factory for Message objects with sensible defaults."""

    def _make(
        guid: str,
        minutes: float,
        *,
        text: str | None = None,
        is_from_me: bool = False,
        sender: str = "+14155550100",
        conversation_id: str = "+14155550100",
    ) -> Message:
        return Message(
            guid=guid,
            text=text if text is not None else f"message {guid}",
            timestamp=at(minutes),
            is_from_me=is_from_me,
            sender="Me" if is_from_me else sender,
            conversation_id=conversation_id,
        )

    return _make


@pytest.fixture
def config_path(tmp_path: Path) -> Path:
    """Path for a temporary config file (not created)."""
    return tmp_path / "config" / "imessage-sync-config.json"


@pytest.fixture
def config_store(config_path: Path) -> JsonConfigStore:
    """A config store backed by a temp file."""
    return JsonConfigStore(config_path)


@pytest.fixture
def tracked_conversation() -> TrackedConversation:
    """A single tracked direct conversation with no watermark yet."""
    return TrackedConversation(
        chat_identifier="+14155550100",
        display_name="Alice",
        participants=["+14155550100"],
        added_date=BASE_TIME,
    )


@pytest.fixture
def populated_store(
    config_store: JsonConfigStore, tracked_conversation: TrackedConversation
) -> JsonConfigStore:
    """A config store already tracking one conversation."""
    config = AppConfig()
    config.sync.tracked_conversations.append(tracked_conversation)
    config_store.save(config)
    return config_store


@pytest.fixture
def contact_cache(tmp_path: Path) -> ContactCache:
    """A contacts cache with one phone and one email entry."""
    cache_path = tmp_path / "contacts-cache.json"
    cache_path.write_text(
        """{
  "contacts": [{"name": "Alice Smith"}, {"name": "Bob Jones"}],
  "lastUpdated": "2024-09-01T12:00:00+00:00",
  "phoneIndex": {"+14155550100": "Alice Smith"},
  "emailIndex": {"bob@example.com": "Bob Jones"}
}""",
        encoding="utf-8",
    )
    cache = ContactCache(cache_path, tmp_path / "contacts-config.json")
    cache.load()
    return cache
