"""Frames exchanged on the live view WebSocket."""
from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field


class WsInbound(BaseModel):
    """Client → Server. Any other ``type`` fails validation."""

    type: Literal["ping", "resync"]


class WsOutbound(BaseModel):
    """Server → Client."""

    type: Literal["view.snapshot", "error", "pong"]
    data: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def snapshot(cls, view: dict[str, Any]) -> WsOutbound:
        return cls(type="view.snapshot", data=view)

    @classmethod
    def error(cls, code: str, **extra: Any) -> WsOutbound:
        return cls(type="error", data={"code": code, **extra})

    @classmethod
    def pong(cls) -> WsOutbound:
        return cls(type="pong")
