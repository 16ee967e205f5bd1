"""Configuration via pydantic-settings with .env support."""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class ImessageSyncSettings(BaseSettings):
    """Process settings loaded from environment variables and .env file."""

    model_config = SettingsConfigDict(
        env_prefix="IMESSAGE_SYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Persisted state
    config_path: Path = Path("imessage-sync-config.json")
    contacts_cache_path: Path = Path("contacts-cache.json")
    manual_contacts_path: Path = Path("contacts-config.json")

    # OAuth credentials
    credentials_path: Path = Path("credentials/client_secret.json")
    token_path: Path = Path("credentials/token.json")

    # Mail
    recipient_email: str | None = None
    sender_email: str | None = None

    # Exporter
    exporter_binary: str = "imessage-exporter"
    export_root: Path = Path("temp_sync")
    messages_db_path: Path = Path.home() / "Library" / "Messages" / "chat.db"

    # Delta extraction
    skew_buffer_seconds: float = 120.0
    first_sync_lookback_hours: float = 24.0

    # Contacts
    contacts_cache_max_age_days: int = 30

    # Logging
    log_level: str = "INFO"

    @property
    def skew_buffer(self) -> timedelta:
        return timedelta(seconds=self.skew_buffer_seconds)

    @property
    def first_sync_lookback(self) -> timedelta:
        return timedelta(hours=self.first_sync_lookback_hours)

    def ensure_directories(self) -> None:
        """Create scratch and credential directories if they don't exist."""
        self.export_root.mkdir(parents=True, exist_ok=True)
        self.credentials_path.parent.mkdir(parents=True, exist_ok=True)
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
