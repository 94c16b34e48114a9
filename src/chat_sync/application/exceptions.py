from __future__ import annotations

from enum import StrEnum


class ErrorKind(StrEnum):
    TRANSPORT = "transport"
    UNAUTHORIZED = "unauthorized"
    NOT_FOUND = "not_found"
    CONNECTION_LOST = "connection_lost"
    VALIDATION = "validation"
    PENDING_WRITE = "pending_write"
    NO_ACTIVE_VIEW = "no_active_view"
    UNKNOWN = "unknown"


class AppError(Exception):
    """Base application error. Always scoped to a single conversation view."""

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__(detail)


class TransportError(AppError):
    """Remote call failed; recoverable by retry or refetch."""

    kind = ErrorKind.TRANSPORT


class UnauthorizedError(AppError):
    """Edit or delete attempted by someone other than the author. Never retried."""

    kind = ErrorKind.UNAUTHORIZED


class NotFoundError(AppError):
    kind = ErrorKind.NOT_FOUND


class ConnectionLostError(AppError):
    """Change feed dropped; handled by refetch-based resync."""

    kind = ErrorKind.CONNECTION_LOST


class ValidationError(AppError):
    kind = ErrorKind.VALIDATION


class PendingWriteError(AppError):
    """A send is still in flight for this conversation."""

    kind = ErrorKind.PENDING_WRITE


class NoActiveViewError(AppError):
    kind = ErrorKind.NO_ACTIVE_VIEW


def error_kind(exc: BaseException) -> ErrorKind:
    if isinstance(exc, AppError):
        return exc.kind
    return ErrorKind.UNKNOWN
