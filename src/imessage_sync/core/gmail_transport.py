"""Gmail API mail transport: MIME assembly and single-attempt send."""

from __future__ import annotations

import base64
import logging
from datetime import datetime
from email.message import EmailMessage
from email.utils import formataddr, make_msgid
from pathlib import Path
from typing import Any

from googleapiclient.discovery import Resource

from imessage_sync.core.auth import authenticate, build_gmail_service
from imessage_sync.core.exceptions import AuthenticationError, DeliveryError
from imessage_sync.core.models import OutboundEmail
from imessage_sync.core.thread_builder import MESSAGE_ID_DOMAIN

logger = logging.getLogger(__name__)


class GmailTransport:
    """Send fully formed emails through ``users.messages.send``.

    No retries: each ``send`` is exactly one API call.
    """

    def __init__(
        self,
        credentials_path: Path,
        token_path: Path,
        *,
        recipient: str | None,
        from_name: str = "iMessage Sync",
        sender_email: str | None = None,
        user_id: str = "me",
        interactive: bool = False,
        service: Resource | None = None,
    ) -> None:
        self._credentials_path = credentials_path
        self._token_path = token_path
        self._recipient = recipient
        self._from_name = from_name
        self._sender_email = sender_email
        self._user_id = user_id
        self._interactive = interactive
        self._service = service

    @property
    def initialized(self) -> bool:
        return self._service is not None

    def initialize(self) -> None:
        """Authenticate and build the API client.

        Raises:
            AuthenticationError: Missing recipient, token or credentials.
        """
        if not self._recipient:
            raise AuthenticationError(
                "No recipient email configured. Set IMESSAGE_SYNC_RECIPIENT_EMAIL "
                "or email.recipient_email in the config file."
            )
        if self._service is not None:
            return

        creds = authenticate(
            self._credentials_path, self._token_path, interactive=self._interactive
        )
        try:
            self._service = build_gmail_service(creds)
        except Exception as e:
            raise AuthenticationError(f"Failed to build Gmail service: {e}") from e
        logger.info("Gmail transport initialized")

    def build_mime(self, email: OutboundEmail) -> EmailMessage:
        """Assemble a multipart/alternative message with threading headers."""
        msg = EmailMessage()
        msg["To"] = email.to or self._recipient or ""
        if self._sender_email:
            msg["From"] = formataddr((self._from_name, self._sender_email))
        msg["Subject"] = email.subject
        msg["Message-ID"] = email.message_id
        if email.in_reply_to:
            msg["In-Reply-To"] = email.in_reply_to
        if email.references:
            msg["References"] = " ".join(email.references)
        msg["X-Conversation-ID"] = email.conversation_id
        msg["X-iMessage-Sync"] = "true"

        msg.set_content(email.text_body)
        msg.add_alternative(email.html_body, subtype="html")
        return msg

    def send(self, email: OutboundEmail) -> str:
        """Send one email. Returns the Gmail message id.

        Raises:
            DeliveryError: If the transport is not initialized or the API rejects the send.
        """
        if self._service is None:
            raise DeliveryError("Gmail transport not initialized. Call initialize() first.")

        raw = base64.urlsafe_b64encode(self.build_mime(email).as_bytes()).decode("ascii")
        try:
            response: dict[str, Any] = (
                self._service.users()
                .messages()
                .send(userId=self._user_id, body={"raw": raw})
                .execute()
            )
        except Exception as e:
            raise DeliveryError(f"Failed to send email {email.message_id}: {e}") from e

        gmail_id = response.get("id", "")
        logger.debug("Email sent: %s (gmail id %s)", email.message_id, gmail_id)
        return gmail_id

    def send_test_email(self) -> str:
        """Send a connectivity check email to the configured recipient."""
        now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        email = OutboundEmail(
            subject="iMessage Sync Test",
            html_body=(
                "<h2>iMessage Sync Test Email</h2>"
                "<p>If you're receiving this, your Gmail configuration is working.</p>"
                f"<p><em>Sent at: {now}</em></p>"
            ),
            text_body=(
                "iMessage Sync Test Email\n\n"
                "If you're receiving this, your Gmail configuration is working.\n\n"
                f"Sent at: {now}"
            ),
            message_id=make_msgid("test", domain=MESSAGE_ID_DOMAIN),
            conversation_id="test",
        )
        return self.send(email)
