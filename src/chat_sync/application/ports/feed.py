from __future__ import annotations

from typing import AsyncIterator, Protocol

from chat_sync.domain.events.feed_event import FeedEvent
from chat_sync.domain.value_objects.scope import ConversationScope


class ChangeFeed(Protocol):
    def subscribe(self, scope: ConversationScope) -> AsyncIterator[FeedEvent]:
        """Stream change events for ``scope``.

        Delivery is at-least-once with no ordering guarantee. The iterator
        raises ``ConnectionLostError`` when the connection drops; closing it
        unsubscribes.
        """
        ...
