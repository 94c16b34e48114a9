from __future__ import annotations

from fastapi import APIRouter, Response, status

from chat_sync.api.deps import SessionDep
from chat_sync.api.v1.schemas.view import (
    EditMessageRequest,
    EnterViewRequest,
    MessageRecordResponse,
    SendMessageRequest,
    ViewResponse,
)

router = APIRouter(prefix="/api/v1/view", tags=["view"])


@router.put("", response_model=ViewResponse)
async def enter_view(body: EnterViewRequest, session: SessionDep) -> ViewResponse:
    scope = body.scope.to_scope(session.user_id)
    messages = await session.enter(scope)
    return ViewResponse.build(scope, messages)


@router.delete("", status_code=status.HTTP_204_NO_CONTENT)
async def exit_view(session: SessionDep) -> Response:
    await session.exit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/messages", response_model=ViewResponse)
async def list_messages(session: SessionDep) -> ViewResponse:
    engine = session.engine
    return ViewResponse.build(engine.scope, engine.snapshot())


@router.post(
    "/messages",
    response_model=MessageRecordResponse,
    status_code=status.HTTP_201_CREATED,
)
async def send_message(body: SendMessageRequest, session: SessionDep) -> MessageRecordResponse:
    record = await session.send(body.body)
    return MessageRecordResponse.from_message(record)


@router.patch("/messages/{message_id}", status_code=status.HTTP_202_ACCEPTED)
async def edit_message(
    message_id: str,
    body: EditMessageRequest,
    session: SessionDep,
) -> dict[str, str]:
    await session.edit(message_id, body.body)
    return {"status": "accepted"}


@router.delete("/messages/{message_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_message(message_id: str, session: SessionDep) -> Response:
    await session.remove(message_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/resync", response_model=ViewResponse)
async def resync_view(session: SessionDep) -> ViewResponse:
    messages = await session.resync()
    return ViewResponse.build(session.engine.scope, messages)
