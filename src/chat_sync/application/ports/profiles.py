from __future__ import annotations

from typing import Protocol

from chat_sync.domain.entities.profile import Profile


class ProfileDirectory(Protocol):
    async def get_profile(self, user_id: str) -> Profile:
        """Raises ``NotFoundError`` for unknown users."""
        ...
