"""Per-conversation sync watermarks, persisted through the config store."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime

from imessage_sync.config.app_config import AppConfig, TrackedConversation
from imessage_sync.core.exceptions import ConfigStoreError, WatermarkCommitError
from imessage_sync.core.models import WatermarkUpdate
from imessage_sync.storage.config_store import JsonConfigStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WatermarkState:
    """What the store knows about one conversation's progress."""

    watermark: datetime | None = None
    last_message_id: str | None = None
    recent_message_ids: frozenset[str] = frozenset()

    @classmethod
    def from_conversation(cls, conv: TrackedConversation) -> WatermarkState:
        return cls(
            watermark=conv.last_sync_date,
            last_message_id=conv.last_message_id,
            recent_message_ids=frozenset(conv.recent_message_ids),
        )

    @property
    def seen_ids(self) -> frozenset[str]:
        if self.last_message_id:
            return self.recent_message_ids | {self.last_message_id}
        return self.recent_message_ids


class WatermarkStore:
    """Read watermarks and commit a cycle's advances in one write.

    Invariant: a committed watermark never moves backwards. Only ``reset``,
    an explicit user action, may clear it.
    """

    def __init__(self, config_store: JsonConfigStore) -> None:
        self._store = config_store

    def read(self, conversation_id: str) -> datetime | None:
        return self.read_state(conversation_id).watermark

    def read_state(self, conversation_id: str) -> WatermarkState:
        conv = self._store.load().sync.find(conversation_id)
        if conv is None:
            return WatermarkState()
        return WatermarkState.from_conversation(conv)

    def commit_batch(
        self,
        updates: Mapping[str, WatermarkUpdate],
        *,
        last_global_sync: datetime | None = None,
    ) -> int:
        """Apply all updates with a single read-modify-write.

        Only the touched fields of touched conversations change, so edits made
        to the file since the cycle started survive. Either every update lands
        or none does.

        Returns:
            Number of conversations whose watermark advanced.

        Raises:
            WatermarkCommitError: If the backing store can't be read or written.
        """

        def apply(config: AppConfig) -> int:
            advanced = 0
            for conversation_id, update in updates.items():
                conv = config.sync.find(conversation_id)
                if conv is None:
                    logger.warning(
                        "Dropping watermark for %s: no longer tracked", conversation_id
                    )
                    continue
                if conv.last_sync_date is not None and update.watermark < conv.last_sync_date:
                    logger.debug(
                        "Keeping newer stored watermark for %s (%s > %s)",
                        conversation_id,
                        conv.last_sync_date.isoformat(),
                        update.watermark.isoformat(),
                    )
                    continue

                conv.last_sync_date = update.watermark
                if update.last_message_id:
                    conv.last_message_id = update.last_message_id
                conv.recent_message_ids = sorted(update.recent_message_ids)
                advanced += 1

            if last_global_sync is not None:
                config.sync.last_global_sync = last_global_sync
            return advanced

        try:
            return self._store.update(apply)
        except ConfigStoreError as e:
            raise WatermarkCommitError(f"Watermark commit failed: {e}") from e

    def reset(self, conversation_id: str) -> bool:
        """Clear a conversation's watermark. Returns False if it isn't tracked."""

        def apply(config: AppConfig) -> bool:
            conv = config.sync.find(conversation_id)
            if conv is None:
                return False
            conv.last_sync_date = None
            conv.last_message_id = None
            conv.recent_message_ids = []
            return True

        try:
            return self._store.update(apply)
        except ConfigStoreError as e:
            raise WatermarkCommitError(f"Watermark reset failed: {e}") from e
