from __future__ import annotations

from typing import Protocol

from chat_sync.domain.entities.message import Message
from chat_sync.domain.value_objects.scope import ConversationScope


class MessageLog(Protocol):
    """Request/response side of the remote message log.

    Every method raises ``TransportError`` on network or remote failure.
    """

    async def list_messages(self, scope: ConversationScope) -> list[Message]:
        """All messages of ``scope`` sorted by (created_at, id)."""
        ...

    async def create_message(
        self, scope: ConversationScope, author_id: str, body: str
    ) -> Message: ...

    async def update_message(
        self, message_id: str, new_body: str, requester_id: str
    ) -> None:
        """Raises ``NotFoundError`` or ``UnauthorizedError``."""
        ...

    async def delete_message(self, message_id: str, requester_id: str) -> None:
        """Raises ``NotFoundError`` or ``UnauthorizedError``."""
        ...
