"""JSON envelope for feed events: ``{"event": <op>, "data": {...}}``."""
from __future__ import annotations

import json
from datetime import datetime
from typing import Any
from uuid import UUID

from chat_sync.domain.entities.message import Message
from chat_sync.domain.events.feed_event import FeedEvent
from chat_sync.domain.value_objects.enums import FeedOp
from chat_sync.domain.value_objects.scope import ConversationScope


class _Encoder(json.JSONEncoder):
    def default(self, o: object) -> Any:
        if isinstance(o, UUID):
            return str(o)
        if isinstance(o, datetime):
            return o.isoformat()
        return super().default(o)


def message_to_dict(message: Message) -> dict[str, Any]:
    return {
        "id": message.id,
        "scope": message.scope.key,
        "author_id": message.author_id,
        "body": message.body,
        "created_at": message.created_at,
        "edited": message.edited,
    }


def message_from_dict(data: dict[str, Any]) -> Message:
    return Message(
        id=str(data["id"]),
        scope=ConversationScope.parse(data["scope"]),
        author_id=str(data["author_id"]),
        body=data["body"],
        created_at=datetime.fromisoformat(data["created_at"]),
        edited=bool(data.get("edited", False)),
    )


def serialize_event(event: FeedEvent) -> str:
    data: dict[str, Any] = {"scope": event.scope.key, "message_id": event.message_id}
    if event.record is not None:
        data["record"] = message_to_dict(event.record)
    return json.dumps({"event": event.op.value, "data": data}, cls=_Encoder)


def deserialize_event(raw: str | bytes) -> FeedEvent:
    envelope = json.loads(raw)
    data = envelope["data"]
    record = data.get("record")
    return FeedEvent(
        scope=ConversationScope.parse(data["scope"]),
        op=FeedOp(envelope["event"]),
        message_id=str(data["message_id"]),
        record=message_from_dict(record) if record else None,
    )
