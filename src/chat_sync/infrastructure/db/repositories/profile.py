from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from chat_sync.application.exceptions import NotFoundError
from chat_sync.domain.entities.profile import Profile
from chat_sync.infrastructure.db.mappers import profile as mapper
from chat_sync.infrastructure.db.models.user import UserModel
from chat_sync.infrastructure.db.repositories._errors import remote_call


class SqlProfileDirectory:
    """Implements application.ports.profiles.ProfileDirectory."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_profile(self, user_id: str) -> Profile:
        with remote_call("get_profile"):
            async with self._session_factory() as session:
                model = await session.scalar(select(UserModel).where(UserModel.id == user_id))
        if model is None:
            raise NotFoundError(f"User {user_id} not found")
        return mapper.model_to_entity(model)
