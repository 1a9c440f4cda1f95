"""
States API
Paged history of the snapshots captured for a twin.
"""
from fastapi import APIRouter, Depends, Query

from twinsync.api.dependencies import get_token, raise_http, service_dependency
from twinsync.core.errors import TwinsError
from twinsync.core.twin.models import StatesPage
from twinsync.core.twin.service import Service

router = APIRouter()


@router.get("/{twin_id}", response_model=StatesPage)
async def list_states(
    twin_id: str,
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=10, ge=1, le=100),
    token: str = Depends(get_token),
    svc: Service = Depends(service_dependency),
):
    try:
        return await svc.list_states(token, offset, limit, twin_id)
    except TwinsError as exc:
        raise_http(exc)
