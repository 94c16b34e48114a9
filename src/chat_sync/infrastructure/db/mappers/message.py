from __future__ import annotations

from chat_sync.domain.entities.message import Message
from chat_sync.domain.value_objects.scope import ConversationScope
from chat_sync.infrastructure.db.models.message import MessageModel


def model_to_entity(model: MessageModel) -> Message:
    return Message(
        id=str(model.id),
        scope=ConversationScope.parse(model.scope_key),
        author_id=model.author_id,
        body=model.body,
        created_at=model.created_at,
        edited=model.edited,
    )
