"""Tests for WatermarkStore batched commits and resets."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from unittest.mock import patch

import pytest

from imessage_sync.config.app_config import TrackedConversation
from imessage_sync.core.exceptions import ConfigStoreError, WatermarkCommitError
from imessage_sync.core.models import WatermarkUpdate
from imessage_sync.storage.config_store import JsonConfigStore
from imessage_sync.storage.watermarks import WatermarkState, WatermarkStore


@pytest.fixture
def store(populated_store: JsonConfigStore) -> WatermarkStore:
    return WatermarkStore(populated_store)


class TestRead:
    def test_unset_watermark(self, store: WatermarkStore) -> None:
        assert store.read("+14155550100") is None

    def test_untracked_conversation(self, store: WatermarkStore) -> None:
        state = store.read_state("nobody@example.com")
        assert state == WatermarkState()


class TestWatermarkState:
    def test_seen_ids_include_last_message(self, tracked_conversation: TrackedConversation) -> None:
        tracked_conversation.last_message_id = "g9"
        tracked_conversation.recent_message_ids = ["g7", "g8"]
        state = WatermarkState.from_conversation(tracked_conversation)
        assert state.seen_ids == frozenset({"g7", "g8", "g9"})

    def test_seen_ids_without_last_message(self) -> None:
        assert WatermarkState().seen_ids == frozenset()


class TestCommitBatch:
    """commit_batch applies every update in one write."""

    def test_advances_watermark(
        self, store: WatermarkStore, at_minute: Callable[[float], datetime]
    ) -> None:
        advanced = store.commit_batch(
            {"+14155550100": WatermarkUpdate(at_minute(10), "g3", ("g2", "g3"))}
        )

        assert advanced == 1
        state = store.read_state("+14155550100")
        assert state.watermark == at_minute(10)
        assert state.last_message_id == "g3"
        assert state.recent_message_ids == frozenset({"g2", "g3"})

    def test_never_moves_backwards(
        self, store: WatermarkStore, at_minute: Callable[[float], datetime]
    ) -> None:
        store.commit_batch({"+14155550100": WatermarkUpdate(at_minute(10), "g3")})
        advanced = store.commit_batch({"+14155550100": WatermarkUpdate(at_minute(5), "g1")})

        assert advanced == 0
        state = store.read_state("+14155550100")
        assert state.watermark == at_minute(10)
        assert state.last_message_id == "g3"

    def test_untracked_ids_skipped(
        self, store: WatermarkStore, at_minute: Callable[[float], datetime]
    ) -> None:
        advanced = store.commit_batch({"ghost": WatermarkUpdate(at_minute(1))})
        assert advanced == 0

    def test_sets_last_global_sync(
        self,
        store: WatermarkStore,
        populated_store: JsonConfigStore,
        at_minute: Callable[[float], datetime],
    ) -> None:
        store.commit_batch({}, last_global_sync=at_minute(30))
        assert populated_store.load().sync.last_global_sync == at_minute(30)

    def test_preserves_concurrent_edits(
        self,
        store: WatermarkStore,
        populated_store: JsonConfigStore,
        at_minute: Callable[[float], datetime],
    ) -> None:
        """Fields not owned by the commit keep whatever is on disk."""
        config = populated_store.load()
        config.sync.tracked_conversations[0].display_name = "Alice (edited)"
        populated_store.save(config)

        store.commit_batch({"+14155550100": WatermarkUpdate(at_minute(10), "g3")})

        conv = populated_store.load().sync.find("+14155550100")
        assert conv is not None
        assert conv.display_name == "Alice (edited)"

    def test_failed_write_advances_nothing(
        self,
        store: WatermarkStore,
        populated_store: JsonConfigStore,
        at_minute: Callable[[float], datetime],
    ) -> None:
        with patch.object(populated_store, "save", side_effect=ConfigStoreError("disk full")):
            with pytest.raises(WatermarkCommitError):
                store.commit_batch({"+14155550100": WatermarkUpdate(at_minute(10), "g3")})

        assert store.read("+14155550100") is None


class TestReset:
    def test_clears_watermark(
        self, store: WatermarkStore, at_minute: Callable[[float], datetime]
    ) -> None:
        store.commit_batch({"+14155550100": WatermarkUpdate(at_minute(10), "g3", ("g3",))})

        assert store.reset("+14155550100") is True
        assert store.read_state("+14155550100") == WatermarkState()

    def test_unknown_conversation(self, store: WatermarkStore) -> None:
        assert store.reset("ghost") is False
