"""Import all models so Base.metadata sees every table."""
from chat_sync.infrastructure.db.models.message import MessageModel
from chat_sync.infrastructure.db.models.user import UserModel

__all__ = [
    "MessageModel",
    "UserModel",
]
