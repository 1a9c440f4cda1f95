"""
Twins API
CRUD over digital twins owned by the calling principal.
"""
import json
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, Response
from pydantic import BaseModel, Field

from twinsync.api.dependencies import get_token, raise_http, service_dependency
from twinsync.core.errors import MalformedEntityError, TwinsError
from twinsync.core.twin.models import Attribute, Definition, Twin, TwinsPage
from twinsync.core.twin.service import Service

router = APIRouter()


class DefinitionRequest(BaseModel):
    attributes: Dict[str, Attribute] = Field(default_factory=dict)


class TwinRequest(BaseModel):
    name: str = ""
    thing_id: str = ""
    metadata: Dict[str, Any] = Field(default_factory=dict)
    definition: Optional[DefinitionRequest] = None

    def to_twin(self, twin_id: str = "") -> Twin:
        return Twin(id=twin_id, name=self.name, thing_id=self.thing_id, metadata=self.metadata)

    def to_definition(self) -> Optional[Definition]:
        if self.definition is None:
            return None
        return Definition(attributes=self.definition.attributes)


def _parse_metadata(raw: Optional[str]) -> Optional[Dict[str, Any]]:
    if not raw:
        return None
    try:
        metadata = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise MalformedEntityError("metadata filter must be a JSON object") from exc
    if not isinstance(metadata, dict):
        raise MalformedEntityError("metadata filter must be a JSON object")
    return metadata


@router.post("", response_model=Twin, status_code=201)
async def add_twin(
    request: TwinRequest,
    response: Response,
    token: str = Depends(get_token),
    svc: Service = Depends(service_dependency),
):
    """Create a twin with its initial definition."""
    try:
        twin = await svc.add_twin(token, request.to_twin(), request.to_definition())
    except TwinsError as exc:
        raise_http(exc)
    response.headers["Location"] = f"/twins/{twin.id}"
    return twin


@router.put("/{twin_id}")
async def update_twin(
    twin_id: str,
    request: TwinRequest,
    token: str = Depends(get_token),
    svc: Service = Depends(service_dependency),
):
    """Partially update a twin; a non-empty definition is appended as a new revision."""
    try:
        await svc.update_twin(token, request.to_twin(twin_id), request.to_definition())
    except TwinsError as exc:
        raise_http(exc)
    return {"id": twin_id, "status": "updated"}


@router.get("", response_model=TwinsPage)
async def list_twins(
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=10, ge=1, le=100),
    name: str = Query(default="", description="Exact twin name"),
    metadata: Optional[str] = Query(default=None, description="JSON object the twin metadata must equal"),
    token: str = Depends(get_token),
    svc: Service = Depends(service_dependency),
):
    try:
        return await svc.list_twins(token, offset, limit, name, _parse_metadata(metadata))
    except TwinsError as exc:
        raise_http(exc)


@router.get("/things/{thing_id}", response_model=Twin)
async def view_twin_by_thing(
    thing_id: str,
    token: str = Depends(get_token),
    svc: Service = Depends(service_dependency),
):
    try:
        return await svc.view_twin_by_thing(token, thing_id)
    except TwinsError as exc:
        raise_http(exc)


@router.get("/{twin_id}", response_model=Twin)
async def view_twin(
    twin_id: str,
    token: str = Depends(get_token),
    svc: Service = Depends(service_dependency),
):
    try:
        return await svc.view_twin(token, twin_id)
    except TwinsError as exc:
        raise_http(exc)


@router.delete("/{twin_id}", status_code=204)
async def remove_twin(
    twin_id: str,
    token: str = Depends(get_token),
    svc: Service = Depends(service_dependency),
):
    try:
        await svc.remove_twin(token, twin_id)
    except TwinsError as exc:
        raise_http(exc)
    return Response(status_code=204)
