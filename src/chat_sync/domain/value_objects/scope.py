from __future__ import annotations

from dataclasses import dataclass

from chat_sync.domain.value_objects.enums import ScopeKind

GLOBAL_ROOM = "global"


@dataclass(frozen=True, slots=True)
class ConversationScope:
    """Partition of the message log: a room tag or an unordered user pair."""

    kind: ScopeKind
    key: str
    participants: tuple[str, ...] = ()

    @classmethod
    def room(cls, tag: str = GLOBAL_ROOM) -> ConversationScope:
        if not tag:
            raise ValueError("Room tag must not be empty")
        return cls(kind=ScopeKind.ROOM, key=f"room:{tag}")

    @classmethod
    def direct(cls, user_a: str, user_b: str) -> ConversationScope:
        if not user_a or not user_b:
            raise ValueError("Direct scope needs two participant ids")
        lo, hi = sorted((user_a, user_b))
        return cls(kind=ScopeKind.DIRECT, key=f"direct:{lo}:{hi}", participants=(lo, hi))

    @classmethod
    def parse(cls, key: str) -> ConversationScope:
        """Inverse of ``key`` as used on the wire and in storage."""
        kind, _, rest = key.partition(":")
        if kind == ScopeKind.ROOM:
            return cls.room(rest)
        if kind == ScopeKind.DIRECT:
            user_a, sep, user_b = rest.partition(":")
            if sep:
                return cls.direct(user_a, user_b)
        raise ValueError(f"Malformed conversation scope: {key!r}")

    def includes(self, user_id: str) -> bool:
        return self.kind == ScopeKind.ROOM or user_id in self.participants

    def __str__(self) -> str:
        return self.key
