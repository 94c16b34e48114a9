from __future__ import annotations

from dataclasses import dataclass

from chat_sync.domain.entities.message import Message
from chat_sync.domain.value_objects.enums import FeedOp
from chat_sync.domain.value_objects.scope import ConversationScope


@dataclass(frozen=True, slots=True)
class FeedEvent:
    """One insert/update/delete notification from the remote message log."""

    scope: ConversationScope
    op: FeedOp
    message_id: str
    record: Message | None = None

    def __post_init__(self) -> None:
        if self.op != FeedOp.DELETE and self.record is None:
            raise ValueError(f"{self.op} event requires a record")

    @classmethod
    def insert(cls, record: Message) -> FeedEvent:
        return cls(scope=record.scope, op=FeedOp.INSERT, message_id=record.id, record=record)

    @classmethod
    def update(cls, record: Message) -> FeedEvent:
        return cls(scope=record.scope, op=FeedOp.UPDATE, message_id=record.id, record=record)

    @classmethod
    def delete(cls, scope: ConversationScope, message_id: str) -> FeedEvent:
        return cls(scope=scope, op=FeedOp.DELETE, message_id=message_id)
