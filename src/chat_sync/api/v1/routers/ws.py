from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from chat_sync.api.v1.schemas.view import ViewResponse
from chat_sync.application.exceptions import AppError
from chat_sync.domain.entities.message import EnrichedMessage
from chat_sync.domain.value_objects.scope import ConversationScope
from chat_sync.infrastructure.ws.protocol import WsInbound, WsOutbound
from chat_sync.services.conversation_session import ConversationSession

logger = logging.getLogger(__name__)
router = APIRouter(tags=["websocket"])


def _snapshot_frame(scope: ConversationScope, messages: list[EnrichedMessage]) -> str:
    view = ViewResponse.build(scope, messages)
    return WsOutbound.snapshot(view.model_dump(mode="json")).model_dump_json()


@router.websocket("/ws/view")
async def ws_view(
    websocket: WebSocket,
    user_id: str = Query(...),
) -> None:
    session: ConversationSession = websocket.app.state.registry.get(user_id)
    await websocket.accept()

    outbox: asyncio.Queue[str] = asyncio.Queue()

    async def _on_change(scope: ConversationScope, messages: list[EnrichedMessage]) -> None:
        outbox.put_nowait(_snapshot_frame(scope, messages))

    session.add_listener(_on_change)
    if session.scope is not None:
        outbox.put_nowait(_snapshot_frame(session.scope, session.messages()))

    interval = websocket.app.state.ws_heartbeat_seconds
    writer_task = asyncio.create_task(_write_loop(websocket, outbox), name=f"ws-writer-{user_id}")
    heartbeat_task = asyncio.create_task(
        _heartbeat(outbox, interval), name=f"ws-heartbeat-{user_id}"
    )
    try:
        await _read_loop(websocket, session, outbox)
    except WebSocketDisconnect:
        pass
    except Exception:
        logger.exception("WS error for %s", user_id)
    finally:
        session.remove_listener(_on_change)
        heartbeat_task.cancel()
        writer_task.cancel()


async def _write_loop(ws: WebSocket, outbox: asyncio.Queue[str]) -> None:
    while True:
        raw = await outbox.get()
        await ws.send_text(raw)


async def _heartbeat(outbox: asyncio.Queue[str], interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        outbox.put_nowait(WsOutbound.pong().model_dump_json())


async def _read_loop(
    ws: WebSocket, session: ConversationSession, outbox: asyncio.Queue[str]
) -> None:
    while True:
        raw = await ws.receive_text()
        try:
            msg = WsInbound.model_validate_json(raw)
        except ValueError:
            outbox.put_nowait(WsOutbound.error("invalid_payload").model_dump_json())
            continue

        if msg.type == "ping":
            outbox.put_nowait(WsOutbound.pong().model_dump_json())

        elif msg.type == "resync":
            try:
                await session.resync()
            except AppError as exc:
                outbox.put_nowait(
                    WsOutbound.error(exc.kind.value, detail=exc.detail).model_dump_json()
                )
