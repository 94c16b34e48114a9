"""Change feed subscriptions, one background task per open handle."""
from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Coroutine

from chat_sync.application.exceptions import ConnectionLostError
from chat_sync.application.ports.feed import ChangeFeed
from chat_sync.domain.events.feed_event import FeedEvent
from chat_sync.domain.value_objects.scope import ConversationScope

logger = logging.getLogger(__name__)

_handle_ids = itertools.count(1)


@dataclass(eq=False, slots=True)
class SubscriptionHandle:
    """One open feed subscription, tagged with the scope it was opened for."""

    scope: ConversationScope
    id: int = field(default_factory=lambda: next(_handle_ids))
    closed: bool = False
    task: asyncio.Task[None] | None = field(default=None, repr=False)


OnFeedEvent = Callable[[SubscriptionHandle, FeedEvent], Coroutine[Any, Any, None]]
OnConnectionLost = Callable[[SubscriptionHandle], Coroutine[Any, Any, None]]


class ChangeFeedSubscriber:
    """Keeps at most one live handle per scope."""

    def __init__(self, feed: ChangeFeed) -> None:
        self._feed = feed
        self._live: dict[ConversationScope, SubscriptionHandle] = {}

    def live_handle(self, scope: ConversationScope) -> SubscriptionHandle | None:
        return self._live.get(scope)

    async def open(
        self,
        scope: ConversationScope,
        on_event: OnFeedEvent,
        on_lost: OnConnectionLost | None = None,
    ) -> SubscriptionHandle:
        previous = self._live.get(scope)
        if previous is not None:
            await self.close(previous)

        handle = SubscriptionHandle(scope=scope)
        handle.task = asyncio.create_task(
            self._listen(handle, on_event, on_lost),
            name=f"feed-{scope.key}-{handle.id}",
        )
        self._live[scope] = handle
        logger.info("Feed subscription %d opened for %s", handle.id, scope)
        return handle

    async def close(self, handle: SubscriptionHandle) -> None:
        """No ``on_event`` call for ``handle`` happens after this returns."""
        if self._live.get(handle.scope) is handle:
            del self._live[handle.scope]
        if handle.closed:
            return
        handle.closed = True

        task = handle.task
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception:
                logger.exception("Feed subscription %d failed while closing", handle.id)
        logger.info("Feed subscription %d closed for %s", handle.id, handle.scope)

    async def close_all(self) -> None:
        for handle in list(self._live.values()):
            await self.close(handle)

    async def _listen(
        self,
        handle: SubscriptionHandle,
        on_event: OnFeedEvent,
        on_lost: OnConnectionLost | None,
    ) -> None:
        stream = self._feed.subscribe(handle.scope)
        try:
            async for event in stream:
                if handle.closed:
                    break
                try:
                    await on_event(handle, event)
                except asyncio.CancelledError:
                    raise
                except Exception:
                    logger.exception(
                        "Error handling %s event on subscription %d", event.op, handle.id
                    )
        except ConnectionLostError as exc:
            logger.warning("Feed for %s lost: %s", handle.scope, exc.detail or exc)
            await self._lost(handle, on_lost)
        except Exception:
            logger.exception("Feed for %s failed", handle.scope)
            await self._lost(handle, on_lost)
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

    async def _lost(self, handle: SubscriptionHandle, on_lost: OnConnectionLost | None) -> None:
        if self._live.get(handle.scope) is handle:
            del self._live[handle.scope]
        handle.closed = True
        if on_lost is not None:
            await on_lost(handle)
