"""Redis Pub/Sub change feed: one channel per conversation scope."""
from __future__ import annotations

import logging
from typing import AsyncIterator

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from chat_sync.application.exceptions import ConnectionLostError
from chat_sync.domain.events.feed_event import FeedEvent
from chat_sync.domain.value_objects.scope import ConversationScope
from chat_sync.infrastructure.bus.serializer import deserialize_event, serialize_event

logger = logging.getLogger(__name__)


def channel_for(prefix: str, scope: ConversationScope) -> str:
    return f"{prefix}:{scope.key}"


class RedisPubSubPublisher:
    """Implements application.ports.bus.EventPublisher."""

    def __init__(self, redis: aioredis.Redis, channel_prefix: str) -> None:
        self._redis = redis
        self._prefix = channel_prefix

    async def publish(self, event: FeedEvent) -> None:
        await self._redis.publish(channel_for(self._prefix, event.scope), serialize_event(event))


class RedisChangeFeed:
    """Implements application.ports.feed.ChangeFeed."""

    def __init__(self, redis: aioredis.Redis, channel_prefix: str) -> None:
        self._redis = redis
        self._prefix = channel_prefix

    async def subscribe(self, scope: ConversationScope) -> AsyncIterator[FeedEvent]:
        channel = channel_for(self._prefix, scope)
        pubsub = self._redis.pubsub()
        try:
            await pubsub.subscribe(channel)
            logger.debug("Subscribed to %s", channel)
            async for message in pubsub.listen():
                if message["type"] != "message":
                    continue
                try:
                    event = deserialize_event(message["data"])
                except (ValueError, KeyError, TypeError):
                    logger.exception("Malformed feed message on %s", channel)
                    continue
                yield event
        except (RedisConnectionError, RedisTimeoutError, OSError) as exc:
            raise ConnectionLostError(f"{channel}: {exc}") from exc
        finally:
            try:
                await pubsub.unsubscribe(channel)
                await pubsub.aclose()
            except (RedisConnectionError, RedisTimeoutError, OSError):
                logger.debug("Unsubscribe from %s failed", channel, exc_info=True)
