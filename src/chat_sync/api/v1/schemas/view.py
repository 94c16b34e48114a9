from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field

from chat_sync.application.exceptions import ValidationError
from chat_sync.domain.entities.message import EnrichedMessage, Message
from chat_sync.domain.value_objects.enums import DeliveryState, ScopeKind
from chat_sync.domain.value_objects.scope import GLOBAL_ROOM, ConversationScope


class ScopeRequest(BaseModel):
    kind: ScopeKind = ScopeKind.ROOM
    tag: str = GLOBAL_ROOM
    peer_id: str | None = None

    def to_scope(self, user_id: str) -> ConversationScope:
        if self.kind == ScopeKind.DIRECT:
            if not self.peer_id or self.peer_id == user_id:
                raise ValidationError("Direct conversation needs another participant")
            return ConversationScope.direct(user_id, self.peer_id)
        if not self.tag:
            raise ValidationError("Room tag must not be empty")
        return ConversationScope.room(self.tag)


class EnterViewRequest(BaseModel):
    scope: ScopeRequest = Field(default_factory=ScopeRequest)


class SendMessageRequest(BaseModel):
    body: str


class EditMessageRequest(BaseModel):
    body: str


class SenderResponse(BaseModel):
    user_id: str
    display_name: str
    avatar_ref: str | None
    initial: str
    is_placeholder: bool


class MessageRecordResponse(BaseModel):
    id: str
    scope: str
    author_id: str
    body: str
    created_at: datetime
    edited: bool

    @classmethod
    def from_message(cls, message: Message) -> MessageRecordResponse:
        return cls(
            id=message.id,
            scope=message.scope.key,
            author_id=message.author_id,
            body=message.body,
            created_at=message.created_at,
            edited=message.edited,
        )


class MessageResponse(MessageRecordResponse):
    local_id: str | None
    state: DeliveryState
    sender: SenderResponse

    @classmethod
    def from_enriched(cls, item: EnrichedMessage) -> MessageResponse:
        message, sender = item.message, item.sender
        return cls(
            id=message.id,
            scope=message.scope.key,
            author_id=message.author_id,
            body=message.body,
            created_at=message.created_at,
            edited=message.edited,
            local_id=message.local_id,
            state=item.state,
            sender=SenderResponse(
                user_id=sender.user_id,
                display_name=sender.display_name,
                avatar_ref=sender.avatar_ref,
                initial=sender.initial,
                is_placeholder=sender.is_placeholder,
            ),
        )


class ViewResponse(BaseModel):
    scope: str
    messages: list[MessageResponse]

    @classmethod
    def build(
        cls, scope: ConversationScope, messages: list[EnrichedMessage]
    ) -> ViewResponse:
        return cls(
            scope=scope.key,
            messages=[MessageResponse.from_enriched(m) for m in messages],
        )
