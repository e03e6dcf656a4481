"""Error taxonomy for the sync layer and its user-facing presentation."""

from enum import StrEnum
from typing import assert_never

from pydantic import BaseModel


class ErrorKind(StrEnum):
    """Kinds of failure a mutation can report to its caller."""

    STORAGE = "storage"
    CONNECTIVITY = "connectivity"
    TRANSPORT = "transport"
    API = "api"


class SyncError(Exception):
    """Base class for every error that crosses the store or gateway boundary."""

    kind: ErrorKind

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    @property
    def transient(self) -> bool:
        """Whether re-issuing the same request may succeed without changing it."""
        return self.kind in {ErrorKind.CONNECTIVITY, ErrorKind.TRANSPORT}


class StorageError(SyncError):
    """Local persistence failed; existing data is left untouched."""

    kind = ErrorKind.STORAGE


class ConnectivityError(SyncError):
    """The task service host could not be reached."""

    kind = ErrorKind.CONNECTIVITY


class TransportError(SyncError):
    """The connection was established but the exchange failed (timeout, reset)."""

    kind = ErrorKind.TRANSPORT


class ApiError(SyncError):
    """The task service answered with a non-success status."""

    kind = ErrorKind.API

    def __init__(self, status: int, code: str, message: str | None = None) -> None:
        super().__init__(message or f"Task service rejected the request: {status} {code}")
        self.status = status
        self.code = code


class ErrorMessage(BaseModel):
    """Structured, user-facing description of a sync error."""

    kind: ErrorKind
    message: str
    suggestion: str
    retryable: bool


def describe_error(error: SyncError) -> ErrorMessage:
    """Map a sync error to the message category the presentation layer renders.

    Args:
        error: The error surfaced by a repository operation

    Returns:
        ErrorMessage with kind, message, suggestion and whether a retry makes sense
    """
    kind = error.kind
    match kind:
        case ErrorKind.STORAGE:
            return ErrorMessage(
                kind=kind,
                message="Could not save changes on this device.",
                suggestion="Free some storage space and try again.",
                retryable=False,
            )
        case ErrorKind.CONNECTIVITY:
            return ErrorMessage(
                kind=kind,
                message="No connection to the server. Your changes are saved on this device.",
                suggestion="Check your internet connection and sync again.",
                retryable=True,
            )
        case ErrorKind.TRANSPORT:
            return ErrorMessage(
                kind=kind,
                message="Network error. Your changes are saved on this device.",
                suggestion="Try syncing again in a moment.",
                retryable=True,
            )
        case ErrorKind.API:
            status = getattr(error, "status", None)
            code = getattr(error, "code", "")
            return ErrorMessage(
                kind=kind,
                message=f"Server rejected the change: {status} {code}".rstrip(),
                suggestion="Edit the task and save it again, or sync to fetch the latest version.",
                retryable=False,
            )
        case _:
            assert_never(kind)
