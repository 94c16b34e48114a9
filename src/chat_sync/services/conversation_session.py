"""The active conversation view of one local user.

A session owns exactly one engine and one feed subscription at a time.
Entering a new scope tears both down before the new ones are created; events
and fetch results that arrive for a superseded scope are discarded.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Callable

from chat_sync.application.exceptions import (
    NoActiveViewError,
    TransportError,
    UnauthorizedError,
)
from chat_sync.application.ports.clock import Clock, SystemClock
from chat_sync.application.ports.feed import ChangeFeed
from chat_sync.application.ports.message_log import MessageLog
from chat_sync.application.ports.profiles import ProfileDirectory
from chat_sync.domain.entities.collection import DEFAULT_ECHO_WINDOW
from chat_sync.domain.entities.message import EnrichedMessage, Message
from chat_sync.domain.entities.profile import ANONYMOUS_LABEL
from chat_sync.domain.events.feed_event import FeedEvent
from chat_sync.domain.value_objects.enums import SendPolicy
from chat_sync.domain.value_objects.scope import ConversationScope
from chat_sync.services.feed_subscriber import ChangeFeedSubscriber, SubscriptionHandle
from chat_sync.services.profile_resolver import ProfileResolver
from chat_sync.services.reconciliation import ReconciliationEngine, ViewListener
from chat_sync.services.write_coordinator import OptimisticWriteCoordinator

logger = logging.getLogger(__name__)


class ConversationSession:
    def __init__(
        self,
        user_id: str,
        message_log: MessageLog,
        feed: ChangeFeed,
        directory: ProfileDirectory,
        *,
        policy: SendPolicy = SendPolicy.REJECT,
        optimistic_delete: bool = True,
        echo_window: timedelta = DEFAULT_ECHO_WINDOW,
        placeholder_label: str = ANONYMOUS_LABEL,
        resync_delay: float = 1.0,
        clock: Clock | None = None,
    ) -> None:
        self.user_id = user_id
        self._log = message_log
        self._subscriber = ChangeFeedSubscriber(feed)
        self._profiles = ProfileResolver(directory, placeholder_label=placeholder_label)
        self._writer = OptimisticWriteCoordinator(
            message_log,
            user_id,
            policy=policy,
            optimistic_delete=optimistic_delete,
        )
        self._echo_window = echo_window
        self._resync_delay = resync_delay
        self._clock = clock or SystemClock()
        self._engine: ReconciliationEngine | None = None
        self._handle: SubscriptionHandle | None = None
        self._resync_task: asyncio.Task[None] | None = None
        self._resync_again = False
        self._listeners: list[ViewListener] = []
        self._switch_lock = asyncio.Lock()

    @property
    def scope(self) -> ConversationScope | None:
        return self._engine.scope if self._engine is not None else None

    @property
    def engine(self) -> ReconciliationEngine:
        if self._engine is None:
            raise NoActiveViewError("No conversation is open")
        return self._engine

    @property
    def handle(self) -> SubscriptionHandle | None:
        return self._handle

    def messages(self) -> list[EnrichedMessage]:
        return self.engine.snapshot()

    def add_listener(self, listener: ViewListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: ViewListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    # -- view lifecycle --------------------------------------------------------

    async def enter(self, scope: ConversationScope) -> list[EnrichedMessage]:
        """Open ``scope`` as the active view, replacing any previous one."""
        if not scope.includes(self.user_id):
            raise UnauthorizedError("Not a participant of this conversation")

        async with self._switch_lock:
            await self._teardown()
            engine = ReconciliationEngine(
                scope,
                self._profiles,
                on_change=self._dispatch,
                clock=self._clock,
                echo_window=self._echo_window,
            )
            self._engine = engine
            # subscribe before fetching so nothing between the two is missed
            self._handle = await self._subscriber.open(scope, self._on_event, self._on_lost)
            logger.info("User %s entered %s", self.user_id, scope)

        await self._fetch_into(engine)
        return engine.snapshot() if engine is self._engine else []

    async def exit(self) -> None:
        async with self._switch_lock:
            await self._teardown()

    async def resync(self) -> list[EnrichedMessage]:
        """Reconnect the feed and re-run the initial fetch for the active view."""
        async with self._switch_lock:
            engine = self.engine
            if self._handle is not None:
                await self._subscriber.close(self._handle)
            self._handle = await self._subscriber.open(
                engine.scope, self._on_event, self._on_lost
            )
        logger.warning("Resyncing %s for user %s", engine.scope, self.user_id)
        await self._fetch_into(engine)
        return engine.snapshot()

    async def close(self) -> None:
        await self.exit()
        await self._subscriber.close_all()
        self._listeners.clear()

    # -- writes ----------------------------------------------------------------

    async def send(self, body: str) -> Message:
        return await self._writer.send(self.engine, body)

    async def edit(self, message_id: str, new_body: str) -> None:
        await self._writer.edit(self.engine, message_id, new_body)

    async def remove(self, message_id: str) -> None:
        await self._writer.remove(self.engine, message_id)

    # -- internals -------------------------------------------------------------

    async def _teardown(self) -> None:
        task, self._resync_task = self._resync_task, None
        self._resync_again = False
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception:
                logger.exception("Resync task failed for user %s", self.user_id)

        handle, self._handle = self._handle, None
        if handle is not None:
            await self._subscriber.close(handle)

        engine, self._engine = self._engine, None
        if engine is not None:
            engine.close()
            self._profiles.clear()
            logger.info("User %s left %s", self.user_id, engine.scope)

    async def _fetch_into(self, engine: ReconciliationEngine) -> None:
        try:
            records = await self._log.list_messages(engine.scope)
        except TransportError as exc:
            logger.warning("Fetch for %s failed: %s", engine.scope, exc.detail or exc)
            if engine is self._engine:
                self._schedule_resync()
            return
        if engine is not self._engine:
            logger.debug("Discarding late fetch for %s", engine.scope)
            return
        await engine.apply_initial_fetch(records)

    async def _on_event(self, handle: SubscriptionHandle, event: FeedEvent) -> None:
        engine = self._engine
        if engine is None or handle is not self._handle or event.scope != handle.scope:
            logger.debug(
                "Dropping stray %s event for %s (subscription %d)",
                event.op,
                event.scope,
                handle.id,
            )
            return
        await engine.apply_feed_event(event)

    async def _on_lost(self, handle: SubscriptionHandle) -> None:
        if handle is self._handle:
            self._schedule_resync()

    def _schedule_resync(self) -> None:
        if self._resync_task is not None and not self._resync_task.done():
            # picked up by the running task once its current attempt ends
            self._resync_again = True
            return
        self._resync_task = asyncio.create_task(
            self._resync_later(), name=f"resync-{self.user_id}"
        )

    async def _resync_later(self) -> None:
        while True:
            self._resync_again = False
            await self._clock.sleep(self._resync_delay)
            try:
                await self.resync()
            except NoActiveViewError:
                return
            if not self._resync_again:
                return

    async def _dispatch(
        self, scope: ConversationScope, messages: list[EnrichedMessage]
    ) -> None:
        if scope != self.scope:
            return
        for listener in list(self._listeners):
            try:
                await listener(scope, messages)
            except Exception:
                logger.exception("Listener failed for %s", scope)


class SessionRegistry:
    """One session per local user, created on first use."""

    def __init__(self, factory: Callable[[str], ConversationSession]) -> None:
        self._factory = factory
        self._sessions: dict[str, ConversationSession] = {}

    def get(self, user_id: str) -> ConversationSession:
        session = self._sessions.get(user_id)
        if session is None:
            session = self._factory(user_id)
            self._sessions[user_id] = session
        return session

    async def close_all(self) -> None:
        sessions, self._sessions = self._sessions, {}
        for session in sessions.values():
            await session.close()
