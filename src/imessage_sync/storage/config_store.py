"""JSON file store for the persisted AppConfig."""

from __future__ import annotations

import logging
import os
import tempfile
from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

from pydantic import ValidationError

from imessage_sync.config.app_config import AppConfig, TrackedConversation
from imessage_sync.core.exceptions import ConfigStoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class JsonConfigStore:
    """Load and atomically save the config file.

    Every write goes through a temp file in the same directory followed by
    ``os.replace``, so readers see either the old or the new document.
    """

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> AppConfig:
        """Read the config, creating a default file if none exists.

        Raises:
            ConfigStoreError: If the file exists but cannot be read or validated.
        """
        if not self._path.exists():
            config = AppConfig()
            self.save(config)
            logger.info("Created default config at %s", self._path)
            return config

        try:
            return AppConfig.model_validate_json(self._path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            raise ConfigStoreError(f"Failed to load config {self._path}: {e}") from e

    def save(self, config: AppConfig) -> None:
        """Atomically replace the config file.

        Raises:
            ConfigStoreError: If the write fails; the previous file is left intact.
        """
        payload = config.model_dump_json(indent=2)
        tmp_name: str | None = None
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self._path.parent,
                prefix=f".{self._path.name}.",
                suffix=".tmp",
                delete=False,
            ) as tmp:
                tmp_name = tmp.name
                tmp.write(payload)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, self._path)
        except OSError as e:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise ConfigStoreError(f"Failed to save config {self._path}: {e}") from e

    def update(self, mutate: Callable[[AppConfig], T]) -> T:
        """Read-modify-write: reload from disk, apply ``mutate``, save once."""
        config = self.load()
        result = mutate(config)
        self.save(config)
        return result

    def add_tracked_conversation(self, conversation: TrackedConversation) -> None:
        """Track a conversation, replacing any entry with the same identifier."""

        def apply(config: AppConfig) -> None:
            tracked = config.sync.tracked_conversations
            for i, existing in enumerate(tracked):
                if existing.chat_identifier == conversation.chat_identifier:
                    tracked[i] = conversation
                    return
            tracked.append(conversation)

        self.update(apply)

    def remove_tracked_conversation(self, chat_identifier: str) -> bool:
        """Stop tracking a conversation. Returns False if it wasn't tracked."""

        def apply(config: AppConfig) -> bool:
            before = len(config.sync.tracked_conversations)
            config.sync.tracked_conversations = [
                c for c in config.sync.tracked_conversations if c.chat_identifier != chat_identifier
            ]
            return len(config.sync.tracked_conversations) < before

        return self.update(apply)
