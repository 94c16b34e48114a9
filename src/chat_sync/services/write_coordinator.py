from __future__ import annotations

import asyncio
import logging
import uuid

from chat_sync.application.exceptions import (
    NotFoundError,
    PendingWriteError,
    UnauthorizedError,
    ValidationError,
    error_kind,
)
from chat_sync.application.ports.message_log import MessageLog
from chat_sync.domain.entities.message import Message
from chat_sync.domain.value_objects.enums import SendPolicy
from chat_sync.services.reconciliation import ReconciliationEngine

logger = logging.getLogger(__name__)


def _clean_body(body: str) -> str:
    cleaned = body.strip()
    if not cleaned:
        raise ValidationError("Message body must not be empty")
    return cleaned


class OptimisticWriteCoordinator:
    """Issues the current user's writes against the remote message log.

    Sends are optimistic: a provisional message is shown until the remote call
    resolves. Edits are not: the view changes only when the feed delivers the
    update. Deletes may hide the message immediately and restore it if the
    remote call fails.
    """

    def __init__(
        self,
        message_log: MessageLog,
        current_user_id: str,
        *,
        policy: SendPolicy = SendPolicy.REJECT,
        optimistic_delete: bool = True,
    ) -> None:
        self._log = message_log
        self.current_user_id = current_user_id
        self.policy = SendPolicy(policy)
        self._optimistic_delete = optimistic_delete
        self._send_lock = asyncio.Lock()

    async def send(self, engine: ReconciliationEngine, body: str) -> Message:
        body = _clean_body(body)
        # the lock spans the whole remote call; an early echo does not end the send
        if self.policy == SendPolicy.REJECT and self._send_lock.locked():
            raise PendingWriteError("Previous message is still being sent")
        async with self._send_lock:
            return await self._send(engine, body)

    async def _send(self, engine: ReconciliationEngine, body: str) -> Message:
        local_id = f"local-{uuid.uuid4().hex}"
        await engine.apply_optimistic_insert(local_id, body, self.current_user_id)
        try:
            record = await self._log.create_message(engine.scope, self.current_user_id, body)
        except (Exception, asyncio.CancelledError) as exc:
            await engine.fail_optimistic(local_id, error_kind(exc))
            raise
        await engine.confirm_optimistic(local_id, record)
        logger.debug("Send %s confirmed as %s", local_id, record.id)
        return record

    async def edit(self, engine: ReconciliationEngine, message_id: str, new_body: str) -> None:
        new_body = _clean_body(new_body)
        message = engine.get(message_id)
        if message is None:
            raise NotFoundError(f"Message {message_id} not found")
        self._assert_author(message)
        await self._log.update_message(message_id, new_body, self.current_user_id)

    async def remove(self, engine: ReconciliationEngine, message_id: str) -> None:
        message = engine.get(message_id)
        if message is not None:
            self._assert_author(message)

        hidden = None
        if self._optimistic_delete and message is not None:
            hidden = await engine.hide(message_id)
        try:
            await self._log.delete_message(message_id, self.current_user_id)
        except NotFoundError:
            logger.debug("Message %s already gone", message_id)
        except (Exception, asyncio.CancelledError):
            if hidden is not None:
                await engine.restore(hidden)
            raise

    def _assert_author(self, message: Message) -> None:
        if message.author_id != self.current_user_id:
            raise UnauthorizedError("Only the author can change this message")
