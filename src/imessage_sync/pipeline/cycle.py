"""One sync cycle: extract → resolve → build → dispatch per conversation, then one commit."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime

from imessage_sync.config.app_config import TrackedConversation
from imessage_sync.core.exceptions import ExtractionError, WatermarkCommitError
from imessage_sync.core.identity import IdentityResolver
from imessage_sync.core.models import (
    ConversationResult,
    CycleResult,
    Delta,
    DeliveryStatus,
    Message,
    WatermarkUpdate,
)
from imessage_sync.core.thread_builder import ThreadBuilder
from imessage_sync.pipeline.dispatcher import DeliveryDispatcher
from imessage_sync.pipeline.extractor import DeltaExtractor
from imessage_sync.storage.config_store import JsonConfigStore
from imessage_sync.storage.watermarks import WatermarkState, WatermarkStore

logger = logging.getLogger(__name__)


class SyncCycle:
    """Orchestrates a single pass over every tracked conversation.

    Conversations run sequentially in config order. Errors inside one
    conversation are recorded in its ``ConversationResult`` and never stop the
    others. A conversation's watermark advances to the newest message seen this
    cycle (incoming or outgoing), even when some of its emails failed to send.
    All advances are committed together at the end; if that commit fails no
    watermark moves and ``WatermarkCommitError`` propagates.
    """

    def __init__(
        self,
        config_store: JsonConfigStore,
        watermarks: WatermarkStore,
        extractor: DeltaExtractor,
        resolver: IdentityResolver,
        builder: ThreadBuilder,
        dispatcher: DeliveryDispatcher,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._config_store = config_store
        self._watermarks = watermarks
        self._extractor = extractor
        self._resolver = resolver
        self._builder = builder
        self._dispatcher = dispatcher
        self._clock = clock or (lambda: datetime.now(UTC))

    async def run(self) -> CycleResult:
        """Run the cycle to completion.

        Raises:
            ConfigStoreError: The tracked-conversation list couldn't be loaded.
            WatermarkCommitError: The final batched commit failed.
        """
        result = CycleResult(started_at=self._clock())

        config = await asyncio.to_thread(self._config_store.load)
        tracked = config.sync.tracked_conversations
        if not tracked:
            logger.warning("No conversations to sync")
            result.finished_at = self._clock()
            return result

        await self._dispatcher.ensure_ready()
        result.simulation = self._dispatcher.simulation

        logger.info("Starting sync for %d conversation(s)...", len(tracked))
        pending: dict[str, WatermarkUpdate] = {}

        for conv in tracked:
            conv_result, update = await self._sync_conversation(conv)
            result.conversations.append(conv_result)
            if update is not None:
                pending[conv.chat_identifier] = update

        try:
            advanced = await asyncio.to_thread(
                self._watermarks.commit_batch, pending, last_global_sync=self._clock()
            )
        except WatermarkCommitError as e:
            result.finished_at = self._clock()
            logger.error(
                "Sync commit failed, no watermarks advanced (%d pending): %s", len(pending), e
            )
            raise

        result.committed = True
        result.finished_at = self._clock()
        elapsed_ms = (result.finished_at - result.started_at).total_seconds() * 1000

        if result.total_new:
            logger.info(
                "Sync completed: %d new message(s), %d sent, %d failed, "
                "%d watermark(s) advanced in %.0fms",
                result.total_new,
                result.total_sent,
                result.total_failed,
                advanced,
                elapsed_ms,
            )
        else:
            logger.debug("Sync completed: no new messages in %.0fms", elapsed_ms)

        return result

    async def _sync_conversation(
        self, conv: TrackedConversation
    ) -> tuple[ConversationResult, WatermarkUpdate | None]:
        conv_result = ConversationResult(
            chat_identifier=conv.chat_identifier, display_name=conv.display_name
        )
        state = WatermarkState.from_conversation(conv)

        try:
            delta = await self._extractor.extract(conv, state)
        except ExtractionError as e:
            logger.error("Failed to sync %s: %s", conv.display_name, e)
            conv_result.error = str(e)
            return conv_result, None
        except Exception as e:
            logger.exception("Unexpected error extracting %s", conv.display_name)
            conv_result.error = f"Unexpected error: {e}"
            return conv_result, None

        conv_result.new_messages = len(delta)
        conv_result.incoming = len(delta.incoming)
        conv_result.outgoing = len(delta.outgoing)

        if not delta:
            logger.debug("%s: no new messages", conv.display_name)
            return conv_result, None

        if delta.outgoing:
            logger.info("You sent %d message(s) to %s", len(delta.outgoing), conv.display_name)
            for msg in delta.outgoing:
                logger.debug("  [%s] You: %r", msg.timestamp.isoformat(), msg.text[:60])

        try:
            await self._forward_incoming(conv, delta, conv_result)
        except Exception as e:
            logger.exception("Unexpected error forwarding %s", conv.display_name)
            conv_result.error = f"Unexpected error: {e}"
            return conv_result, None

        logger.info(
            "%s: %d new message(s) (%d received, %d sent), %d emailed, %d failed",
            conv.display_name,
            conv_result.new_messages,
            conv_result.incoming,
            conv_result.outgoing,
            conv_result.sent,
            conv_result.failed,
        )
        return conv_result, self._next_watermark(delta.messages, state)

    async def _forward_incoming(
        self, conv: TrackedConversation, delta: Delta, conv_result: ConversationResult
    ) -> None:
        if not delta.incoming:
            return

        emails = self._builder.build(
            delta.incoming, conv.chat_identifier, self._display_name(conv)
        )
        for email in emails:
            status = await self._dispatcher.dispatch(email)
            if status is DeliveryStatus.SENT:
                conv_result.sent += 1
            elif status is DeliveryStatus.FAILED:
                conv_result.failed += 1
            else:
                conv_result.simulated += 1

    def _display_name(self, conv: TrackedConversation) -> str:
        if conv.is_group or (conv.display_name and conv.display_name != conv.chat_identifier):
            return conv.display_name
        return self._resolver.resolve(conv.chat_identifier)

    def _next_watermark(
        self, messages: tuple[Message, ...], state: WatermarkState
    ) -> WatermarkUpdate:
        """Watermark = newest of ``messages``, never behind the stored one.

        ``messages`` is the non-empty delta, oldest first.
        ``recent_message_ids`` carries the GUIDs that the next cycle's buffered
        boundary will still admit, so they aren't forwarded twice.
        """
        newest = messages[-1]
        watermark, last_message_id = newest.timestamp, newest.guid
        if state.watermark is not None and state.watermark > watermark:
            # Only late arrivals inside the buffer; the stored position stands
            watermark, last_message_id = state.watermark, state.last_message_id

        horizon = watermark - self._extractor.skew_buffer
        recent = {m.guid for m in messages if m.timestamp > horizon}
        if state.watermark is not None and state.watermark > horizon:
            recent |= state.recent_message_ids

        return WatermarkUpdate(
            watermark=watermark,
            last_message_id=last_message_id,
            recent_message_ids=tuple(sorted(recent)),
        )
