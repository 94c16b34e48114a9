from __future__ import annotations

import asyncio
from functools import partial

import pytest
import pytest_asyncio

from chat_sync.application.exceptions import (
    ConnectionLostError,
    NoActiveViewError,
    TransportError,
    UnauthorizedError,
)
from chat_sync.domain.events.feed_event import FeedEvent
from chat_sync.domain.value_objects.scope import ConversationScope
from chat_sync.services.conversation_session import ConversationSession, SessionRegistry
from tests.conftest import (
    ALICE,
    BOB,
    OTHER_ROOM,
    ROOM,
    FakeChangeFeed,
    FakeMessageLog,
    at,
    ids,
    make_message,
    wait_for,
)


class SlowListLog(FakeMessageLog):
    """Holds ``list_messages`` for one scope until released."""

    def __init__(self, feed: FakeChangeFeed, held: ConversationScope) -> None:
        super().__init__(feed)
        self.held = held
        self.release = asyncio.Event()

    async def list_messages(self, scope):
        if scope == self.held:
            await self.release.wait()
        return await super().list_messages(scope)


@pytest.fixture
def feed() -> FakeChangeFeed:
    return FakeChangeFeed()


@pytest.fixture
def log(feed: FakeChangeFeed) -> FakeMessageLog:
    return FakeMessageLog(feed)


@pytest_asyncio.fixture
async def session(log, feed, directory, clock):
    s = ConversationSession(ALICE, log, feed, directory, resync_delay=5, clock=clock)
    yield s
    await s.close()


@pytest.mark.asyncio
async def test_enter_fetches_and_enriches(session, log, recorder):
    log.seed(make_message("b", 2, author_id=BOB), make_message("a", 1))
    session.add_listener(recorder)

    view = await session.enter(ROOM)

    assert ids(view) == ["a", "b"]
    assert [m.sender.display_name for m in view] == ["Alice Liddell", "Bob Builder"]
    assert session.scope == ROOM
    assert ids(recorder.last) == ["a", "b"]


@pytest.mark.asyncio
async def test_live_events_reach_the_view(session, feed, recorder):
    session.add_listener(recorder)
    await session.enter(ROOM)
    await wait_for(lambda: feed.active(ROOM) == 1)

    await feed.publish(FeedEvent.insert(make_message("b", 5, author_id=BOB)))
    await wait_for(lambda: ids(session.messages()) == ["b"])

    assert recorder.last[0].sender.display_name == "Bob Builder"


@pytest.mark.asyncio
async def test_send_ends_with_exactly_one_message(session, feed):
    await session.enter(ROOM)
    await wait_for(lambda: feed.active(ROOM) == 1)

    record = await session.send("hi all")
    await asyncio.sleep(0.02)

    view = session.messages()
    assert ids(view) == [record.id]
    assert view[0].message.body == "hi all"
    assert not view[0].is_pending


@pytest.mark.asyncio
async def test_edit_arrives_through_the_feed(session, log, feed):
    log.seed(make_message("a", 1, body="draft"))
    await session.enter(ROOM)
    await wait_for(lambda: feed.active(ROOM) == 1)

    await session.edit("a", "final")
    await wait_for(lambda: session.messages()[0].message.body == "final")

    assert session.messages()[0].message.edited is True


@pytest.mark.asyncio
async def test_remove_hides_and_stays_hidden(session, log, feed):
    log.seed(make_message("a", 1), make_message("b", 2))
    await session.enter(ROOM)
    await wait_for(lambda: feed.active(ROOM) == 1)

    await session.remove("a")
    await asyncio.sleep(0.02)

    assert ids(session.messages()) == ["b"]


@pytest.mark.asyncio
async def test_switching_scope_drops_old_subscription(session, log, feed, recorder):
    log.seed(make_message("r", 1, scope=OTHER_ROOM))
    session.add_listener(recorder)
    await session.enter(ROOM)
    await wait_for(lambda: feed.active(ROOM) == 1)
    old_handle = session.handle

    view = await session.enter(OTHER_ROOM)
    await wait_for(lambda: feed.active(OTHER_ROOM) == 1)
    await feed.publish(FeedEvent.insert(make_message("late", 3)))
    await asyncio.sleep(0.02)

    assert old_handle.closed
    assert feed.active(ROOM) == 0
    assert ids(view) == ["r"]
    assert ids(session.messages()) == ["r"]
    assert ids(recorder.last) == ["r"]


@pytest.mark.asyncio
async def test_event_with_foreign_scope_is_dropped(session, feed):
    await session.enter(ROOM)
    await wait_for(lambda: feed.active(ROOM) == 1)

    feed.deliver(ROOM, FeedEvent.insert(make_message("x", 1, scope=OTHER_ROOM)))
    await asyncio.sleep(0.02)

    assert session.messages() == []


@pytest.mark.asyncio
async def test_late_fetch_for_previous_scope_is_discarded(feed, directory, clock):
    log = SlowListLog(feed, held=ROOM)
    log.seed(make_message("old", 1), make_message("new", 2, scope=OTHER_ROOM))
    session = ConversationSession(ALICE, log, feed, directory, clock=clock)
    try:
        first = asyncio.create_task(session.enter(ROOM))
        await wait_for(lambda: feed.active(ROOM) == 1)
        await session.enter(OTHER_ROOM)
        log.release.set()

        assert await first == []
        assert ids(session.messages()) == ["new"]
    finally:
        await session.close()


@pytest.mark.asyncio
async def test_connection_loss_triggers_resync(session, log, feed, clock):
    await session.enter(ROOM)
    await wait_for(lambda: feed.active(ROOM) == 1)

    log.seed(make_message("missed", 4, author_id=BOB))
    feed.drop(ROOM)
    await wait_for(lambda: feed.subscribe_count[ROOM] == 2)
    await wait_for(lambda: ids(session.messages()) == ["missed"])

    assert feed.active(ROOM) == 1
    assert not session.handle.closed
    assert clock.now() == at(5)


@pytest.mark.asyncio
async def test_failed_initial_fetch_is_retried(session, log, recorder):
    log.seed(make_message("a", 1))
    log.fail_next["list"] = TransportError("down")
    session.add_listener(recorder)

    assert await session.enter(ROOM) == []
    await wait_for(lambda: recorder.emissions and ids(recorder.last) == ["a"])

    assert [call for call in log.calls if call[0] == "list"] == [("list", ROOM)] * 2


@pytest.mark.asyncio
async def test_resync_retries_when_new_subscription_fails(session, log, feed):
    await session.enter(ROOM)
    await wait_for(lambda: feed.active(ROOM) == 1)
    feed.refuse[ROOM] = [ConnectionLostError("broker still down")]

    log.seed(make_message("missed", 4, author_id=BOB))
    feed.drop(ROOM)
    await wait_for(lambda: feed.subscribe_count[ROOM] == 3)
    await wait_for(lambda: feed.active(ROOM) == 1)

    assert not session.handle.closed
    assert ids(session.messages()) == ["missed"]

    await feed.publish(FeedEvent.insert(make_message("live", 5, author_id=BOB)))
    await wait_for(lambda: ids(session.messages()) == ["missed", "live"])


@pytest.mark.asyncio
async def test_failing_feed_does_not_block_scope_switch(session, log, feed):
    feed.refuse[ROOM] = [RuntimeError("pubsub connection not set")] * 3
    log.seed(make_message("r", 1, scope=OTHER_ROOM))

    await session.enter(ROOM)
    await asyncio.sleep(0.02)
    view = await session.enter(OTHER_ROOM)

    assert session.scope == OTHER_ROOM
    assert ids(view) == ["r"]
    await wait_for(lambda: feed.active(OTHER_ROOM) == 1)


@pytest.mark.asyncio
async def test_direct_scope_requires_participation(session):
    with pytest.raises(UnauthorizedError):
        await session.enter(ConversationScope.direct(BOB, "carol"))

    view = await session.enter(ConversationScope.direct(BOB, ALICE))
    assert view == []


@pytest.mark.asyncio
async def test_writes_need_an_active_view(session):
    with pytest.raises(NoActiveViewError):
        await session.send("hello?")
    with pytest.raises(NoActiveViewError):
        session.messages()


@pytest.mark.asyncio
async def test_exit_tears_down(session, feed):
    await session.enter(ROOM)
    await wait_for(lambda: feed.active(ROOM) == 1)

    await session.exit()
    await session.exit()

    assert session.scope is None
    assert session.handle is None
    assert feed.active(ROOM) == 0


@pytest.mark.asyncio
async def test_registry_keeps_one_session_per_user(log, feed, directory):
    registry = SessionRegistry(
        partial(ConversationSession, message_log=log, feed=feed, directory=directory)
    )

    alice = registry.get(ALICE)
    assert registry.get(ALICE) is alice
    assert registry.get(BOB) is not alice

    await alice.enter(ROOM)
    await wait_for(lambda: feed.active(ROOM) == 1)
    await registry.close_all()

    assert feed.active(ROOM) == 0
    assert registry.get(ALICE) is not alice
