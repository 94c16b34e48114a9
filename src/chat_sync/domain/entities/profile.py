from __future__ import annotations

from dataclasses import dataclass

ANONYMOUS_LABEL = "Anonymous User"


@dataclass(frozen=True, slots=True)
class Profile:
    user_id: str
    display_name: str
    avatar_ref: str | None = None
    is_placeholder: bool = False

    @classmethod
    def placeholder(cls, user_id: str, label: str = ANONYMOUS_LABEL) -> Profile:
        return cls(user_id=user_id, display_name=label, is_placeholder=True)

    @property
    def initial(self) -> str:
        return (self.display_name[:1] or "U").upper()
