"""Build threaded outbound emails from a batch of incoming messages."""

from __future__ import annotations

import html
import logging
import re
from collections.abc import Sequence

from imessage_sync.core.identity import IdentityResolver
from imessage_sync.core.models import Message, OutboundEmail
from imessage_sync.core.phone import format_phone_compact, is_email

logger = logging.getLogger(__name__)

MESSAGE_ID_DOMAIN = "imessage-sync.local"

_HTML_TEMPLATE = """<!DOCTYPE html>
<html>
<head>
    <meta charset="UTF-8">
    <style>
        body {{ font-family: system-ui, -apple-system, sans-serif; margin: 20px; }}
        .message-container {{ max-width: 600px; margin: 0 auto; }}
        .conversation-name {{ font-size: 18px; font-weight: bold; color: #333;
                              border-bottom: 1px solid #ddd; padding-bottom: 10px; }}
        .sender {{ font-size: 12px; color: #666; margin: 15px 0 5px; }}
        .message {{ background: #E5E5EA; color: black; padding: 12px 16px;
                    border-radius: 18px; max-width: 70%; word-wrap: break-word; }}
        .timestamp {{ font-size: 11px; color: #999; margin-top: 5px; }}
        .footer {{ margin-top: 20px; padding-top: 10px; border-top: 1px solid #ddd;
                   font-size: 12px; color: #666; text-align: center; }}
    </style>
</head>
<body>
    <div class="message-container">
        <div class="conversation-name">{conversation}</div>
        <div class="sender">{sender}</div>
        <div class="message">{text}</div>
        <div class="timestamp">{timestamp}</div>
        <div class="footer">Synced from iMessage &bull; Message received {timestamp}</div>
    </div>
</body>
</html>"""


class ThreadBuilder:
    """Turn one conversation's incoming messages into a single reply chain.

    Chaining restarts with every batch: the first email of a cycle has no
    ``In-Reply-To`` even if an earlier cycle emailed the same conversation.
    """

    def __init__(self, resolver: IdentityResolver | None = None) -> None:
        self._resolver = resolver

    def build(
        self,
        messages: Sequence[Message],
        conversation_id: str,
        display_name: str,
    ) -> list[OutboundEmail]:
        """Build one email per message, oldest first.

        Args:
            messages: Incoming messages for this conversation.
            conversation_id: Raw chat identifier (phone number or email).
            display_name: Resolved conversation name.

        Returns:
            Emails where email *i* replies to email *i-1* and references all
            earlier emails in the batch.
        """
        ordered = sorted(messages, key=lambda m: m.timestamp)
        base_subject = self.build_subject(display_name, conversation_id)

        emails: list[OutboundEmail] = []
        chain: list[str] = []

        for message in ordered:
            message_id = self.generate_message_id(conversation_id, message.guid)
            sender = self._sender_label(message)

            emails.append(
                OutboundEmail(
                    subject=f"Re: {base_subject}" if chain else base_subject,
                    html_body=self._format_html(message, display_name, sender),
                    text_body=self._format_text(message, display_name, sender),
                    message_id=message_id,
                    conversation_id=conversation_id,
                    in_reply_to=chain[-1] if chain else None,
                    references=tuple(chain) if chain else None,
                )
            )
            chain.append(message_id)

        logger.debug("Built %d email(s) for %s", len(emails), conversation_id)
        return emails

    @staticmethod
    def generate_message_id(conversation_id: str, guid: str) -> str:
        """Stable RFC 5322 Message-ID for a (conversation, message) pair."""
        clean_conv = re.sub(r"[^a-zA-Z0-9]", "", conversation_id)
        clean_guid = re.sub(r"[^a-zA-Z0-9]", "", guid)
        return f"<imessage-{clean_conv}-{clean_guid}@{MESSAGE_ID_DOMAIN}>"

    @staticmethod
    def build_subject(display_name: str, conversation_id: str) -> str:
        """Subject line; the raw identifier is appended so mail filters can match it."""
        if (
            display_name == conversation_id
            or conversation_id in display_name
            or display_name in conversation_id
        ):
            return f"iMessage: {display_name}"

        identifier = (
            conversation_id if is_email(conversation_id) else format_phone_compact(conversation_id)
        )
        if identifier in display_name:
            return f"iMessage: {display_name}"
        return f"iMessage: {display_name} ({identifier})"

    def _sender_label(self, message: Message) -> str:
        if message.is_from_me:
            return "You"
        if self._resolver is None:
            return message.sender
        return self._resolver.resolve(message.sender)

    @staticmethod
    def _format_timestamp(message: Message) -> str:
        return message.timestamp.astimezone().strftime("%Y-%m-%d %H:%M:%S")

    def _format_html(self, message: Message, conversation: str, sender: str) -> str:
        return _HTML_TEMPLATE.format(
            conversation=html.escape(conversation),
            sender=html.escape(sender),
            text=html.escape(message.text).replace("\n", "<br>"),
            timestamp=self._format_timestamp(message),
        )

    def _format_text(self, message: Message, conversation: str, sender: str) -> str:
        timestamp = self._format_timestamp(message)
        return (
            f"iMessage Conversation: {conversation}\n\n"
            f"From: {sender}\n"
            f"Date: {timestamp}\n\n"
            f"{message.text}\n\n"
            f"---\n"
            f"Synced from iMessage • Message received {timestamp}"
        )
