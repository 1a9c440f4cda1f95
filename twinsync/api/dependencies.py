"""Shared API dependencies: caller token, service handles and error mapping."""

from typing import NoReturn

from fastapi import Header, HTTPException

from twinsync.core.errors import ErrorCode, TwinsError, UnauthorizedError
from twinsync.core.twin.factory import get_ingestor, get_service
from twinsync.core.twin.ingest import TelemetryIngestor
from twinsync.core.twin.service import Service

_STATUS_BY_CODE = {
    ErrorCode.UNAUTHORIZED: 401,
    ErrorCode.NOT_FOUND: 404,
    ErrorCode.CONFLICT: 409,
    ErrorCode.MALFORMED_ENTITY: 400,
    ErrorCode.DECODE_FAILURE: 400,
    ErrorCode.PERSISTENCE_ERROR: 500,
}


async def get_token(authorization: str = Header(default="")) -> str:
    """Caller token from ``Authorization: Bearer <token>`` (bare tokens accepted)."""
    token = authorization.strip()
    if token.lower().startswith("bearer "):
        token = token[len("bearer "):].strip()
    if not token:
        raise_http(UnauthorizedError())
    return token


def service_dependency() -> Service:
    return get_service()


def ingestor_dependency() -> TelemetryIngestor:
    return get_ingestor()


def raise_http(exc: TwinsError) -> NoReturn:
    raise HTTPException(status_code=_STATUS_BY_CODE.get(exc.code, 500), detail=exc.to_dict()) from exc
