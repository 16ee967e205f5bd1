"""JSON-backed contacts cache and manual name overrides."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path

from imessage_sync.core.phone import normalize_phone

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CacheInfo:
    contacts: int
    phones: int
    emails: int
    last_updated: datetime


class ContactCache:
    """Phone/email → display name indexes plus user-maintained overrides.

    The cache file is produced elsewhere (from the OS address book); this class
    only loads, queries and re-saves it. Manual overrides live in their own
    file so a cache refresh never clobbers them.
    """

    def __init__(self, cache_path: Path, manual_path: Path) -> None:
        self._cache_path = cache_path
        self._manual_path = manual_path
        self._contacts: list[dict] = []
        self._phone_index: dict[str, str] = {}
        self._email_index: dict[str, str] = {}
        self._last_updated: datetime | None = None
        self._manual: dict[str, str] = {}

    @property
    def loaded(self) -> bool:
        return self._last_updated is not None

    def load(self) -> None:
        """Load the cache and the manual overrides. Missing or corrupt files load as empty."""
        if self._cache_path.exists():
            try:
                data = json.loads(self._cache_path.read_text(encoding="utf-8"))
                self._contacts = list(data.get("contacts", []))
                self._phone_index = dict(data.get("phoneIndex", {}))
                self._email_index = {
                    k.lower(): v for k, v in data.get("emailIndex", {}).items()
                }
                self._last_updated = datetime.fromisoformat(data["lastUpdated"])
                if self._last_updated.tzinfo is None:
                    self._last_updated = self._last_updated.replace(tzinfo=UTC)
            except (OSError, ValueError, KeyError, TypeError) as e:
                logger.warning("Ignoring unreadable contacts cache %s: %s", self._cache_path, e)
                self._contacts, self._phone_index, self._email_index = [], {}, {}
                self._last_updated = None

        if self._manual_path.exists():
            try:
                self._manual = dict(json.loads(self._manual_path.read_text(encoding="utf-8")))
            except (OSError, ValueError, TypeError) as e:
                logger.warning("Ignoring unreadable manual contacts %s: %s", self._manual_path, e)
                self._manual = {}

    def save(self) -> None:
        """Write the cache file back out."""
        data = {
            "contacts": self._contacts,
            "lastUpdated": (self._last_updated or datetime.now(UTC)).isoformat(),
            "phoneIndex": self._phone_index,
            "emailIndex": self._email_index,
        }
        self._cache_path.parent.mkdir(parents=True, exist_ok=True)
        self._cache_path.write_text(json.dumps(data, indent=2), encoding="utf-8")

    def is_stale(self, max_age: timedelta) -> bool:
        if self._last_updated is None:
            return True
        return datetime.now(UTC) - self._last_updated >= max_age

    def info(self) -> CacheInfo | None:
        if self._last_updated is None:
            return None
        return CacheInfo(
            contacts=len(self._contacts),
            phones=len(self._phone_index),
            emails=len(self._email_index),
            last_updated=self._last_updated,
        )

    def lookup_by_phone(self, phone: str) -> str | None:
        normalized = normalize_phone(phone)
        if not normalized:
            return None
        return self._phone_index.get(normalized)

    def lookup_by_email(self, email: str) -> str | None:
        return self._email_index.get(email.lower())

    def lookup_exact(self, identifier: str) -> str | None:
        return self._phone_index.get(identifier) or self._email_index.get(identifier.lower())

    # ---------- manual overrides ----------

    def manual_contacts(self) -> dict[str, str]:
        return dict(self._manual)

    def lookup_manual(self, identifier: str) -> str | None:
        return self._manual.get(identifier)

    def add_manual(self, identifier: str, display_name: str) -> None:
        self._manual[identifier] = display_name
        self._save_manual()

    def remove_manual(self, identifier: str) -> bool:
        """Remove an override. Returns False if none existed."""
        if self._manual.pop(identifier, None) is None:
            return False
        self._save_manual()
        return True

    def _save_manual(self) -> None:
        self._manual_path.parent.mkdir(parents=True, exist_ok=True)
        self._manual_path.write_text(json.dumps(self._manual, indent=2), encoding="utf-8")
