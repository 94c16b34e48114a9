from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timezone

from chat_sync.domain.entities.profile import Profile
from chat_sync.domain.value_objects.enums import DeliveryState
from chat_sync.domain.value_objects.scope import ConversationScope

OrderingKey = tuple[datetime, str]


def as_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


@dataclass(frozen=True, slots=True)
class Message:
    id: str
    scope: ConversationScope
    author_id: str
    body: str
    created_at: datetime
    edited: bool = False
    local_id: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "created_at", as_utc(self.created_at))

    @property
    def ordering_key(self) -> OrderingKey:
        return (self.created_at, self.id)

    @property
    def is_provisional(self) -> bool:
        return self.local_id is not None

    def with_edit(self, body: str, edited: bool) -> Message:
        """Copy with the mutable fields replaced."""
        return replace(self, body=body, edited=edited)

    @classmethod
    def provisional(
        cls,
        local_id: str,
        scope: ConversationScope,
        author_id: str,
        body: str,
        now: datetime,
    ) -> Message:
        return cls(
            id=local_id,
            scope=scope,
            author_id=author_id,
            body=body,
            created_at=now,
            local_id=local_id,
        )


@dataclass(frozen=True, slots=True)
class EnrichedMessage:
    """Message joined with its sender profile, as handed to the view."""

    message: Message
    sender: Profile
    state: DeliveryState = DeliveryState.CONFIRMED

    @property
    def id(self) -> str:
        return self.message.id

    @property
    def is_pending(self) -> bool:
        return self.state == DeliveryState.PENDING
