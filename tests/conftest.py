"""Shared test fixtures and in-memory collaborators."""
from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncIterator, Callable

import pytest

from chat_sync.application.exceptions import (
    AppError,
    ConnectionLostError,
    NotFoundError,
    UnauthorizedError,
)
from chat_sync.domain.entities.message import EnrichedMessage, Message
from chat_sync.domain.entities.profile import Profile
from chat_sync.domain.events.feed_event import FeedEvent
from chat_sync.domain.value_objects.scope import ConversationScope
from chat_sync.services.profile_resolver import ProfileResolver
from chat_sync.services.reconciliation import ReconciliationEngine

EPOCH = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
ROOM = ConversationScope.room("global")
OTHER_ROOM = ConversationScope.room("random")

ALICE = "alice"
BOB = "bob"


def at(seconds: float) -> datetime:
    return EPOCH + timedelta(seconds=seconds)


def make_message(
    message_id: str,
    ts: float,
    *,
    author_id: str = ALICE,
    body: str | None = None,
    scope: ConversationScope = ROOM,
    edited: bool = False,
) -> Message:
    return Message(
        id=message_id,
        scope=scope,
        author_id=author_id,
        body=body if body is not None else f"body of {message_id}",
        created_at=at(ts),
        edited=edited,
    )


def ids(messages: list[EnrichedMessage] | list[Message]) -> list[str]:
    return [m.id for m in messages]


async def wait_for(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    """Let background tasks run until ``predicate`` holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.005)


@dataclass
class ManualClock:
    current: datetime = EPOCH

    def now(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)

    async def sleep(self, seconds: float) -> None:
        self.advance(seconds)
        await asyncio.sleep(0)


@dataclass
class FakeProfileDirectory:
    profiles: dict[str, Profile] = field(default_factory=dict)
    calls: list[str] = field(default_factory=list)
    failures: dict[str, AppError] = field(default_factory=dict)
    gate: asyncio.Event | None = None

    def add(self, user_id: str, display_name: str, avatar_ref: str | None = None) -> None:
        self.profiles[user_id] = Profile(user_id, display_name, avatar_ref)

    async def get_profile(self, user_id: str) -> Profile:
        self.calls.append(user_id)
        if self.gate is not None:
            await self.gate.wait()
        if user_id in self.failures:
            raise self.failures[user_id]
        profile = self.profiles.get(user_id)
        if profile is None:
            raise NotFoundError(f"User {user_id} not found")
        return profile


_END = object()


class FakeChangeFeed:
    """Per-scope in-memory pub/sub with controllable connection drops."""

    def __init__(self) -> None:
        self._queues: dict[ConversationScope, list[asyncio.Queue[Any]]] = {}
        self.subscribe_count: dict[ConversationScope, int] = {}
        # errors raised by the next subscribes to a scope, in order
        self.refuse: dict[ConversationScope, list[Exception]] = {}

    def active(self, scope: ConversationScope) -> int:
        return len(self._queues.get(scope, []))

    async def subscribe(self, scope: ConversationScope) -> AsyncIterator[FeedEvent]:
        self.subscribe_count[scope] = self.subscribe_count.get(scope, 0) + 1
        refused = self.refuse.get(scope)
        if refused:
            raise refused.pop(0)
        queue: asyncio.Queue[Any] = asyncio.Queue()
        self._queues.setdefault(scope, []).append(queue)
        try:
            while True:
                item = await queue.get()
                if item is _END:
                    raise ConnectionLostError(f"{scope} dropped")
                yield item
        finally:
            self._queues[scope].remove(queue)

    def deliver(self, channel: ConversationScope, event: FeedEvent) -> None:
        """Push ``event`` to every subscriber of ``channel``, whatever its own tag."""
        for queue in self._queues.get(channel, []):
            queue.put_nowait(event)

    async def publish(self, event: FeedEvent) -> None:
        self.deliver(event.scope, event)

    def drop(self, scope: ConversationScope) -> None:
        for queue in self._queues.get(scope, []):
            queue.put_nowait(_END)


class FakeMessageLog:
    """In-memory remote log. Writes are echoed to ``feed`` when one is attached."""

    def __init__(self, feed: FakeChangeFeed | None = None) -> None:
        self.feed = feed
        self.store: dict[str, Message] = {}
        self.calls: list[tuple[str, Any]] = []
        self.fail_next: dict[str, AppError] = {}
        self.gate: asyncio.Event | None = None
        self._ids = itertools.count(1)
        self._clock = itertools.count(1000)

    def seed(self, *messages: Message) -> None:
        for message in messages:
            self.store[message.id] = message

    def _maybe_fail(self, op: str) -> None:
        exc = self.fail_next.pop(op, None)
        if exc is not None:
            raise exc

    async def list_messages(self, scope: ConversationScope) -> list[Message]:
        self.calls.append(("list", scope))
        self._maybe_fail("list")
        return sorted(
            (m for m in self.store.values() if m.scope == scope),
            key=lambda m: m.ordering_key,
        )

    async def create_message(
        self, scope: ConversationScope, author_id: str, body: str
    ) -> Message:
        self.calls.append(("create", body))
        if self.gate is not None:
            await self.gate.wait()
        self._maybe_fail("create")
        record = Message(
            id=f"srv-{next(self._ids):04d}",
            scope=scope,
            author_id=author_id,
            body=body,
            created_at=at(next(self._clock)),
        )
        self.store[record.id] = record
        if self.feed is not None:
            await self.feed.publish(FeedEvent.insert(record))
        return record

    async def update_message(self, message_id: str, new_body: str, requester_id: str) -> None:
        self.calls.append(("update", message_id))
        self._maybe_fail("update")
        record = self._owned(message_id, requester_id)
        updated = record.with_edit(new_body, True)
        self.store[message_id] = updated
        if self.feed is not None:
            await self.feed.publish(FeedEvent.update(updated))

    async def delete_message(self, message_id: str, requester_id: str) -> None:
        self.calls.append(("delete", message_id))
        self._maybe_fail("delete")
        record = self._owned(message_id, requester_id)
        del self.store[message_id]
        if self.feed is not None:
            await self.feed.publish(FeedEvent.delete(record.scope, message_id))

    def _owned(self, message_id: str, requester_id: str) -> Message:
        record = self.store.get(message_id)
        if record is None:
            raise NotFoundError(f"Message {message_id} not found")
        if record.author_id != requester_id:
            raise UnauthorizedError("Only the author can change this message")
        return record


@dataclass
class ViewRecorder:
    """Collects every list the engine emits."""

    emissions: list[list[EnrichedMessage]] = field(default_factory=list)

    async def __call__(self, scope: ConversationScope, messages: list[EnrichedMessage]) -> None:
        self.emissions.append(messages)

    @property
    def last(self) -> list[EnrichedMessage]:
        return self.emissions[-1]


@pytest.fixture
def directory() -> FakeProfileDirectory:
    d = FakeProfileDirectory()
    d.add(ALICE, "Alice Liddell", "avatars/alice.png")
    d.add(BOB, "Bob Builder")
    return d


@pytest.fixture
def resolver(directory: FakeProfileDirectory) -> ProfileResolver:
    return ProfileResolver(directory)


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def recorder() -> ViewRecorder:
    return ViewRecorder()


@pytest.fixture
def engine(
    resolver: ProfileResolver, recorder: ViewRecorder, clock: ManualClock
) -> ReconciliationEngine:
    return ReconciliationEngine(ROOM, resolver, on_change=recorder, clock=clock)
