"""Reconciliation engine: one ordered, enriched message view per scope.

Initial fetches, feed events and optimistic writes all funnel through the
handlers below. Handlers are serialized by a FIFO lock, so at most one of them
mutates the collection at a time; each one resolves missing sender profiles
and then emits the recomputed list.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Any, Callable, Coroutine, Iterable

from chat_sync.application.exceptions import ErrorKind, PendingWriteError
from chat_sync.application.ports.clock import Clock, SystemClock
from chat_sync.domain.entities.collection import DEFAULT_ECHO_WINDOW, MessageCollection
from chat_sync.domain.entities.message import EnrichedMessage, Message
from chat_sync.domain.events.feed_event import FeedEvent
from chat_sync.domain.value_objects.enums import DeliveryState, FeedOp
from chat_sync.domain.value_objects.scope import ConversationScope
from chat_sync.services.profile_resolver import ProfileResolver

logger = logging.getLogger(__name__)

ViewListener = Callable[
    [ConversationScope, list[EnrichedMessage]], Coroutine[Any, Any, None]
]


class ReconciliationEngine:
    def __init__(
        self,
        scope: ConversationScope,
        profiles: ProfileResolver,
        *,
        on_change: ViewListener | None = None,
        clock: Clock | None = None,
        echo_window: timedelta = DEFAULT_ECHO_WINDOW,
    ) -> None:
        self.scope = scope
        self._profiles = profiles
        self._on_change = on_change
        self._clock = clock or SystemClock()
        self._collection = MessageCollection(scope, echo_window=echo_window)
        self._lock = asyncio.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> Message | None:
        return self._collection.provisional

    def get(self, message_id: str) -> Message | None:
        return self._collection.get(message_id)

    def echo_of(self, local_id: str) -> str | None:
        return self._collection.echo_of(local_id)

    def snapshot(self) -> list[EnrichedMessage]:
        result: list[EnrichedMessage] = []
        for message in self._collection.view():
            sender = self._profiles.peek(message.author_id) or self._profiles.placeholder(
                message.author_id
            )
            state = DeliveryState.PENDING if message.is_provisional else DeliveryState.CONFIRMED
            result.append(EnrichedMessage(message=message, sender=sender, state=state))
        return result

    def close(self) -> None:
        """Detach from the view; every later apply is ignored."""
        self._closed = True
        self._on_change = None

    # -- handlers ------------------------------------------------------------

    async def apply_initial_fetch(self, records: Iterable[Message]) -> None:
        records = list(records)
        async with self._lock:
            if self._ignored("initial fetch"):
                return
            self._collection.replace_all(records)
            logger.debug("Applied initial fetch of %d records to %s", len(records), self.scope)
            await self._refresh()

    async def apply_feed_event(self, event: FeedEvent) -> None:
        async with self._lock:
            if self._ignored(f"{event.op} {event.message_id}"):
                return
            if event.scope != self.scope:
                logger.debug(
                    "Dropping %s event for %s in view %s", event.op, event.scope, self.scope
                )
                return

            if event.op == FeedOp.INSERT:
                assert event.record is not None
                changed = self._collection.upsert(event.record)
            elif event.op == FeedOp.UPDATE:
                assert event.record is not None
                changed = self._collection.apply_update(event.record)
            else:
                changed = self._collection.remove(event.message_id) is not None

            if changed:
                await self._refresh()

    async def apply_optimistic_insert(
        self, local_id: str, body: str, author_id: str
    ) -> Message:
        async with self._lock:
            if self._collection.provisional is not None:
                raise PendingWriteError("Previous message is still being sent")
            provisional = Message.provisional(
                local_id, self.scope, author_id, body, self._clock.now()
            )
            self._collection.add_provisional(provisional)
            if not self._closed:
                await self._refresh()
            return provisional

    async def confirm_optimistic(self, local_id: str, server_record: Message) -> None:
        async with self._lock:
            if self._ignored(f"confirm {local_id}"):
                return
            dropped = self._collection.take_provisional(local_id)
            changed = self._collection.upsert(server_record)
            if dropped is not None or changed:
                await self._refresh()

    async def fail_optimistic(
        self, local_id: str, error_kind: ErrorKind
    ) -> Message | None:
        """Roll back the provisional message; returns it so the caller can report."""
        async with self._lock:
            dropped = self._collection.take_provisional(local_id)
            if dropped is None:
                return None
            logger.info("Send %s failed in %s: %s", local_id, self.scope, error_kind)
            if not self._closed:
                await self._refresh()
            return dropped

    async def hide(self, message_id: str) -> Message | None:
        async with self._lock:
            removed = self._collection.remove(message_id)
            if removed is not None and not self._closed:
                await self._refresh()
            return removed

    async def restore(self, message: Message) -> None:
        async with self._lock:
            if self._collection.restore(message) and not self._closed:
                await self._refresh()

    # -- internals -----------------------------------------------------------

    def _ignored(self, what: str) -> bool:
        if self._closed:
            logger.debug("Ignoring %s for closed view %s", what, self.scope)
        return self._closed

    async def _refresh(self) -> None:
        view = self._collection.view()
        missing = {m.author_id for m in view if not self._profiles.is_known(m.author_id)}
        if missing:
            await asyncio.gather(
                *(self._profiles.resolve_or_placeholder(uid) for uid in sorted(missing))
            )
        await self._emit()

    async def _emit(self) -> None:
        listener = self._on_change
        if listener is None or self._closed:
            return
        try:
            await listener(self.scope, self.snapshot())
        except Exception:
            logger.exception("View listener failed for %s", self.scope)
