from __future__ import annotations

from chat_sync.domain.entities.profile import Profile
from chat_sync.infrastructure.db.models.user import UserModel


def model_to_entity(model: UserModel) -> Profile:
    return Profile(
        user_id=model.id,
        display_name=model.full_name or model.username,
        avatar_ref=model.avatar_url,
    )
