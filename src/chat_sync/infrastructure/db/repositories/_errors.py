from __future__ import annotations

import uuid
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.exc import SQLAlchemyError

from chat_sync.application.exceptions import NotFoundError, TransportError


@contextmanager
def remote_call(what: str) -> Iterator[None]:
    """Map driver and network failures to ``TransportError``."""
    try:
        yield
    except (SQLAlchemyError, OSError) as exc:
        raise TransportError(f"{what} failed: {exc}") from exc


def parse_message_id(message_id: str) -> uuid.UUID:
    try:
        return uuid.UUID(message_id)
    except ValueError:
        raise NotFoundError(f"Message {message_id} not found") from None
