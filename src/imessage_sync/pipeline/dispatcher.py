"""Email delivery with per-message failure isolation and a simulation fallback."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from imessage_sync.core.exceptions import ImessageSyncError
from imessage_sync.core.gmail_transport import GmailTransport
from imessage_sync.core.models import DeliveryStatus, OutboundEmail

logger = logging.getLogger(__name__)

FailureHook = Callable[[OutboundEmail, Exception], None]


class DeliveryDispatcher:
    """Send built emails one at a time; a failed send never stops the batch.

    When the transport cannot be initialized (no token, no recipient) or email
    is disabled, the dispatcher runs in simulation mode: emails are logged and
    reported as ``SIMULATED``. Initialization is retried at the start of each
    cycle, so fixing credentials ends simulation without a restart.
    """

    def __init__(
        self,
        transport: GmailTransport | None,
        *,
        on_failure: FailureHook | None = None,
    ) -> None:
        self._transport = transport
        self._on_failure = on_failure
        self._simulation: bool | None = None

    @property
    def simulation(self) -> bool:
        return self._simulation is not False

    async def ensure_ready(self) -> bool:
        """Initialize the transport if needed. Returns False when simulating."""
        if self._transport is None:
            if self._simulation is None:
                logger.info("Email sending disabled - running in simulation mode")
            self._simulation = True
            return False

        if self._transport.initialized:
            self._simulation = False
            return True

        try:
            await asyncio.to_thread(self._transport.initialize)
        except ImessageSyncError as e:
            logger.error("Failed to initialize mail transport: %s", e)
            logger.info("Running in simulation mode (no emails will be sent)")
            self._simulation = True
            return False

        self._simulation = False
        return True

    async def dispatch(self, email: OutboundEmail) -> DeliveryStatus:
        """Make exactly one delivery attempt for ``email``."""
        if self.simulation or self._transport is None:
            logger.info("[SIMULATION] Would send email: %s", email.subject)
            logger.debug("[SIMULATION] %s", email.text_body[:200])
            return DeliveryStatus.SIMULATED

        try:
            await asyncio.to_thread(self._transport.send, email)
        except Exception as e:
            logger.error("Failed to send email %s: %s", email.message_id, e)
            self._notify_failure(email, e)
            return DeliveryStatus.FAILED

        return DeliveryStatus.SENT

    def _notify_failure(self, email: OutboundEmail, error: Exception) -> None:
        if self._on_failure is None:
            return
        try:
            self._on_failure(email, error)
        except Exception:
            logger.exception("Delivery failure hook raised for %s", email.message_id)
