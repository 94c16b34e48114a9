from __future__ import annotations

from enum import StrEnum


class ScopeKind(StrEnum):
    ROOM = "room"
    DIRECT = "direct"


class FeedOp(StrEnum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class DeliveryState(StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"


class SendPolicy(StrEnum):
    REJECT = "reject"
    QUEUE = "queue"
