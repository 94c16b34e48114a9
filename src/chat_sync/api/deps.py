"""FastAPI dependency injection helpers."""
from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request, status

from chat_sync.services.conversation_session import ConversationSession, SessionRegistry


def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.registry


RegistryDep = Annotated[SessionRegistry, Depends(get_registry)]


async def get_current_user_id(
    x_user_id: Annotated[str | None, Header(alias="X-User-Id")] = None,
) -> str:
    """Identity is validated upstream; this only requires that it is present."""
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )
    return x_user_id


CurrentUserId = Annotated[str, Depends(get_current_user_id)]


async def get_session(registry: RegistryDep, user_id: CurrentUserId) -> ConversationSession:
    return registry.get(user_id)


SessionDep = Annotated[ConversationSession, Depends(get_session)]
