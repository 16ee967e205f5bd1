"""Resolve phone numbers and emails to display names."""

from __future__ import annotations

import logging

from imessage_sync.core.phone import format_phone, is_email
from imessage_sync.storage.contact_cache import ContactCache

logger = logging.getLogger(__name__)


class IdentityResolver:
    """Map a participant identifier to a human-readable name.

    Order: exact cache hit, normalized-phone cache hit, manual override,
    formatted identifier. Never raises; names are labels only and play no part
    in routing or deduplication.
    """

    def __init__(self, cache: ContactCache) -> None:
        self._cache = cache
        self._resolved: dict[str, str] = {}

    def resolve(self, identifier: str) -> str:
        if identifier in self._resolved:
            return self._resolved[identifier]

        try:
            name = self._lookup(identifier)
        except Exception as e:
            logger.warning("Contact lookup failed for %s: %s", identifier, e)
            name = None

        display_name = name or self.format_identifier(identifier)
        self._resolved[identifier] = display_name
        return display_name

    def _lookup(self, identifier: str) -> str | None:
        name = self._cache.lookup_exact(identifier)
        if name:
            return name

        if is_email(identifier):
            name = self._cache.lookup_by_email(identifier)
        else:
            name = self._cache.lookup_by_phone(identifier)
        if name:
            return name

        return self._cache.lookup_manual(identifier)

    def add_manual(self, identifier: str, display_name: str) -> None:
        self._cache.add_manual(identifier, display_name)
        self._resolved.pop(identifier, None)

    def remove_manual(self, identifier: str) -> bool:
        self._resolved.pop(identifier, None)
        return self._cache.remove_manual(identifier)

    @staticmethod
    def format_identifier(identifier: str) -> str:
        if is_email(identifier):
            return identifier
        return format_phone(identifier)
