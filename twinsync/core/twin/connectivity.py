"""
Telemetry connectivity and decoding helpers for twin state ingestion.

Provides:
- TelemetryMessage envelope (msgpack serialization)
- SenML record model and batch decoding
- MQTT subscription client built on aiomqtt
"""

from __future__ import annotations

import asyncio
import logging
import ssl
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, List, Optional

import aiomqtt
import msgpack  # type: ignore[import-untyped]
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from twinsync.core.errors import DecodeError
from twinsync.core.twin.models import utcnow

logger = logging.getLogger(__name__)


class TelemetryMessage(BaseModel):
    """Envelope delivered by the broker for every published record batch."""

    channel: str = Field(..., description="Channel the batch was published on")
    subtopic: str = Field(default="", description="Subtopic within the channel")
    publisher: str = Field(..., description="Thing that published the batch")
    protocol: str = Field(default="mqtt", description="Protocol the batch arrived over")
    payload: bytes = Field(default=b"", description="Raw SenML JSON payload")
    created: datetime = Field(default_factory=utcnow)

    def to_bytes(self) -> bytes:
        """Serialize the envelope with msgpack."""
        data = self.model_dump()
        data["created"] = self.created.isoformat()
        result: bytes = msgpack.packb(data, use_bin_type=True)
        return result

    @classmethod
    def from_bytes(cls, data: bytes) -> "TelemetryMessage":
        """Deserialize a msgpack encoded envelope."""
        if not data:
            raise ValueError("empty telemetry envelope")
        raw = msgpack.unpackb(data, raw=False)
        if not isinstance(raw, dict):
            raise ValueError("telemetry envelope must be a map")
        return cls(**raw)


class SenMLRecord(BaseModel):
    """Single SenML (RFC 8428) record, JSON labels as aliases."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    base_name: Optional[str] = Field(default=None, alias="bn")
    base_time: Optional[float] = Field(default=None, alias="bt")
    base_unit: Optional[str] = Field(default=None, alias="bu")
    base_value: Optional[float] = Field(default=None, alias="bv")
    base_sum: Optional[float] = Field(default=None, alias="bs")
    base_version: Optional[int] = Field(default=None, alias="bver")
    name: Optional[str] = Field(default=None, alias="n")
    unit: Optional[str] = Field(default=None, alias="u")
    time: Optional[float] = Field(default=None, alias="t")
    update_time: Optional[float] = Field(default=None, alias="ut")
    float_value: Optional[float] = Field(default=None, alias="v")
    string_value: Optional[str] = Field(default=None, alias="vs")
    bool_value: Optional[bool] = Field(default=None, alias="vb")
    data_value: Optional[str] = Field(default=None, alias="vd")
    sum: Optional[float] = Field(default=None, alias="s")

    @property
    def value(self) -> Any:
        """Record value: numeric first, then string, boolean and data values."""
        for candidate in (self.float_value, self.string_value, self.bool_value, self.data_value):
            if candidate is not None:
                return candidate
        return None


_records_adapter = TypeAdapter(List[SenMLRecord])


def decode_records(payload: bytes) -> List[SenMLRecord]:
    """Decode a SenML JSON batch; raises DecodeError on malformed input."""
    try:
        return _records_adapter.validate_json(payload)
    except ValidationError as exc:
        raise DecodeError(f"invalid SenML payload: {exc.error_count()} error(s)") from exc


@dataclass
class MqttConfig:
    host: str = "localhost"
    port: int = 1883
    username: Optional[str] = None
    password: Optional[str] = None
    cafile: Optional[str] = None
    qos: int = 1
    client_id: str = "twinsync"

    def client_kwargs(self, suffix: str = "") -> dict[str, Any]:
        tls_context = None
        if self.cafile:
            tls_context = ssl.create_default_context(cafile=self.cafile)
        kwargs = {
            "hostname": self.host,
            "port": self.port,
            "username": self.username,
            "password": self.password,
            "identifier": f"{self.client_id}{suffix}",
            "tls_context": tls_context,
        }
        # Filter out None values to avoid unexpected keyword errors
        return {k: v for k, v in kwargs.items() if v is not None}


class MqttTelemetryClient:
    """Subscribes to telemetry topics and forwards messages to an async handler."""

    def __init__(self, config: Optional[MqttConfig] = None) -> None:
        self.config = config or MqttConfig()
        self._client: Optional[aiomqtt.Client] = None
        self._task: Optional[asyncio.Task[None]] = None
        self._stopped = asyncio.Event()
        self._subscribed = asyncio.Event()

    async def start(
        self,
        topics: list[str],
        handler: Callable[[str, bytes], Awaitable[Any]],
    ) -> None:
        """Start the subscription loop in a background task."""
        if self._client is not None:
            return
        self._client = aiomqtt.Client(**self.config.client_kwargs("-telemetry"))

        async def _runner() -> None:
            assert self._client is not None
            async with self._client:
                for topic in topics:
                    await self._client.subscribe(topic, qos=self.config.qos)
                self._subscribed.set()
                logger.info("Subscribed to telemetry topics %s", topics)
                async for message in self._client.messages:
                    topic = str(message.topic)
                    try:
                        await handler(topic, bytes(message.payload))
                    except Exception:
                        logger.exception("Telemetry handler failed for topic %s", topic)
                    if self._stopped.is_set():
                        break

        self._task = asyncio.create_task(_runner())

    async def wait_subscribed(self, timeout: float = 2.0) -> bool:
        """Wait until subscription is established (best-effort)."""
        try:
            await asyncio.wait_for(self._subscribed.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False

    async def stop(self) -> None:
        """Stop subscription loop."""
        self._stopped.set()
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        self._client = None


__all__ = [
    "TelemetryMessage",
    "SenMLRecord",
    "decode_records",
    "MqttConfig",
    "MqttTelemetryClient",
]
