from __future__ import annotations

import logging
from typing import NoReturn

from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from chat_sync.application.exceptions import NotFoundError, UnauthorizedError
from chat_sync.application.ports.bus import EventPublisher
from chat_sync.domain.entities.message import Message
from chat_sync.domain.events.feed_event import FeedEvent
from chat_sync.domain.value_objects.scope import ConversationScope
from chat_sync.infrastructure.db.mappers import message as mapper
from chat_sync.infrastructure.db.models.message import MessageModel
from chat_sync.infrastructure.db.repositories._errors import parse_message_id, remote_call

logger = logging.getLogger(__name__)


class SqlMessageLog:
    """Implements application.ports.message_log.MessageLog on Postgres.

    Each committed write is fanned out to the change feed through ``publisher``.
    Authorship is enforced inside the write statements themselves.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        publisher: EventPublisher,
    ) -> None:
        self._session_factory = session_factory
        self._publisher = publisher

    async def list_messages(self, scope: ConversationScope) -> list[Message]:
        stmt = (
            select(MessageModel)
            .where(MessageModel.scope_key == scope.key)
            .order_by(MessageModel.created_at.asc(), MessageModel.id.asc())
        )
        with remote_call("list_messages"):
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                return [mapper.model_to_entity(m) for m in result.scalars().all()]

    async def create_message(
        self, scope: ConversationScope, author_id: str, body: str
    ) -> Message:
        stmt = (
            insert(MessageModel)
            .values(scope_key=scope.key, author_id=author_id, body=body)
            .returning(MessageModel)
        )
        with remote_call("create_message"):
            async with self._session_factory() as session:
                result = await session.execute(stmt)
                record = mapper.model_to_entity(result.scalar_one())
                await session.commit()

        await self._fan_out(FeedEvent.insert(record))
        return record

    async def update_message(
        self, message_id: str, new_body: str, requester_id: str
    ) -> None:
        pk = parse_message_id(message_id)
        stmt = (
            update(MessageModel)
            .where(MessageModel.id == pk, MessageModel.author_id == requester_id)
            .values(body=new_body, edited=True, updated_at=func.now())
            .returning(MessageModel)
        )
        with remote_call("update_message"):
            async with self._session_factory() as session:
                row = (await session.execute(stmt)).scalar_one_or_none()
                if row is None:
                    await self._raise_missing_or_forbidden(session, pk)
                record = mapper.model_to_entity(row)
                await session.commit()

        await self._fan_out(FeedEvent.update(record))

    async def delete_message(self, message_id: str, requester_id: str) -> None:
        pk = parse_message_id(message_id)
        stmt = (
            delete(MessageModel)
            .where(MessageModel.id == pk, MessageModel.author_id == requester_id)
            .returning(MessageModel.scope_key)
        )
        with remote_call("delete_message"):
            async with self._session_factory() as session:
                scope_key = (await session.execute(stmt)).scalar_one_or_none()
                if scope_key is None:
                    await self._raise_missing_or_forbidden(session, pk)
                await session.commit()

        await self._fan_out(FeedEvent.delete(ConversationScope.parse(scope_key), message_id))

    async def _raise_missing_or_forbidden(self, session: AsyncSession, pk: object) -> NoReturn:
        exists = await session.scalar(select(MessageModel.id).where(MessageModel.id == pk))
        if exists is None:
            raise NotFoundError(f"Message {pk} not found")
        raise UnauthorizedError("Only the author can change this message")

    async def _fan_out(self, event: FeedEvent) -> None:
        # the write is committed; a lost notification is healed by the next refetch
        try:
            await self._publisher.publish(event)
        except Exception:
            logger.exception("Failed to publish %s for %s", event.op, event.message_id)
