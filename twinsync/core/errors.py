"""Error codes and exceptions raised by the twins service.

Every exception carries an ``ErrorCode`` so the API layer, the ingestor and
the outcome notifier can report failures uniformly.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict


class ErrorCode(str, Enum):
    UNAUTHORIZED = "UNAUTHORIZED"  # missing or invalid credentials
    NOT_FOUND = "NOT_FOUND"  # non-existent entity
    CONFLICT = "CONFLICT"  # entity already exists
    MALFORMED_ENTITY = "MALFORMED_ENTITY"  # invalid entity specification
    PERSISTENCE_ERROR = "PERSISTENCE_ERROR"  # repository I/O failure
    DECODE_FAILURE = "DECODE_FAILURE"  # telemetry payload failed to parse


class TwinsError(Exception):
    """Base error for the twins service."""

    code: ErrorCode = ErrorCode.PERSISTENCE_ERROR
    default_message = "twins service error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code.value, "message": self.message}


class UnauthorizedError(TwinsError):
    code = ErrorCode.UNAUTHORIZED
    default_message = "missing or invalid credentials provided"


class NotFoundError(TwinsError):
    code = ErrorCode.NOT_FOUND
    default_message = "non-existent entity"


class ConflictError(TwinsError):
    code = ErrorCode.CONFLICT
    default_message = "entity already exists"


class MalformedEntityError(TwinsError):
    code = ErrorCode.MALFORMED_ENTITY
    default_message = "malformed entity specification"


class PersistenceError(TwinsError):
    code = ErrorCode.PERSISTENCE_ERROR
    default_message = "failed to persist entity"


class DecodeError(TwinsError):
    code = ErrorCode.DECODE_FAILURE
    default_message = "failed to decode telemetry payload"


__all__ = [
    "ErrorCode",
    "TwinsError",
    "UnauthorizedError",
    "NotFoundError",
    "ConflictError",
    "MalformedEntityError",
    "PersistenceError",
    "DecodeError",
]
