"""
Telemetry API
HTTP fallback for MQTT: accepts one SenML batch on behalf of a thing.
"""
import json
from typing import Any, List, Union

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from twinsync.api.dependencies import get_token, ingestor_dependency, raise_http, service_dependency
from twinsync.core.errors import TwinsError
from twinsync.core.twin.connectivity import TelemetryMessage
from twinsync.core.twin.factory import core_service
from twinsync.core.twin.ingest import TelemetryIngestor
from twinsync.core.twin.service import Service

router = APIRouter()


class TelemetryRequest(BaseModel):
    publisher: str = Field(..., description="Thing the batch is published for")
    channel: str
    subtopic: str = ""
    payload: Union[List[Any], str] = Field(..., description="SenML records or their JSON text")

    def to_message(self) -> TelemetryMessage:
        if isinstance(self.payload, str):
            raw = self.payload.encode("utf-8")
        else:
            raw = json.dumps(self.payload).encode("utf-8")
        return TelemetryMessage(
            channel=self.channel,
            subtopic=self.subtopic,
            publisher=self.publisher,
            protocol="http",
            payload=raw,
        )


@router.post("", status_code=202)
async def ingest_telemetry(
    request: TelemetryRequest,
    token: str = Depends(get_token),
    svc: Service = Depends(service_dependency),
    ingestor: TelemetryIngestor = Depends(ingestor_dependency),
):
    """Authenticate the caller, then ingest the batch like an MQTT message."""
    try:
        await core_service(svc).identify(token)
    except TwinsError as exc:
        raise_http(exc)
    result = await ingestor.handle_payload(request.to_message(), topic=f"http/{request.channel}")
    return {"status": "accepted", "ingest": result}
