from __future__ import annotations

from typing import Protocol

from chat_sync.domain.events.feed_event import FeedEvent


class EventPublisher(Protocol):
    async def publish(self, event: FeedEvent) -> None: ...
