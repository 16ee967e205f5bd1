"""Custom exceptions for iMessage Sync."""


class ImessageSyncError(Exception):
    """Base exception for all iMessage Sync errors."""


class ExtractionError(ImessageSyncError):
    """Failed to obtain a conversation's messages from the archive."""


class ExportError(ExtractionError):
    """The exporter process could not be run or exited non-zero."""


class ParseError(ExtractionError):
    """Failed to parse exported message data."""


class AuthenticationError(ImessageSyncError):
    """Failed to initialize the mail transport."""


class DeliveryError(ImessageSyncError):
    """The mail transport rejected a single email."""


class ConfigStoreError(ImessageSyncError):
    """Failed to load or save the persisted config."""


class WatermarkCommitError(ImessageSyncError):
    """A batched watermark commit did not land."""


class StartupError(ImessageSyncError):
    """Missing permissions or tooling; the service cannot start."""
