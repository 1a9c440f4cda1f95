"""
Telemetry ingestion: broker messages in, twin state snapshots out.

Each envelope is decoded and handed to ``save_state`` on the calling task.
Failures are reported in the returned status and logged rather than raised,
so the broker never redelivers non-retryable messages.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from twinsync.core.errors import TwinsError
from twinsync.core.twin.connectivity import TelemetryMessage
from twinsync.core.twin.service import Service
from twinsync.utils.metrics import telemetry_messages_total

logger = logging.getLogger(__name__)


class TelemetryIngestor:
    def __init__(self, service: Service) -> None:
        self.service = service

    async def handle_payload(self, payload: Any, topic: Optional[str] = None) -> Dict[str, Any]:
        """Decode an envelope and persist matching telemetry into twin state."""
        try:
            message = self._coerce_message(payload)
        except Exception as exc:  # noqa: BLE001
            logger.debug("Failed to decode telemetry envelope", exc_info=True, extra={"topic": topic})
            telemetry_messages_total.labels(status="rejected").inc()
            return {"status": "rejected", "reason": str(exc), "topic": topic}

        try:
            await self.service.save_state(message)
        except TwinsError as exc:
            logger.warning(
                "Telemetry not saved: %s",
                exc.message,
                extra={"publisher": message.publisher, "topic": topic, "error_code": exc.code.value},
            )
            telemetry_messages_total.labels(status="failed").inc()
            return {
                "status": "failed",
                "publisher": message.publisher,
                "topic": topic,
                "error": exc.to_dict(),
            }

        telemetry_messages_total.labels(status="processed").inc()
        return {"status": "processed", "publisher": message.publisher, "topic": topic}

    async def handle_mqtt(self, topic: str, payload: bytes) -> None:
        """Handler signature expected by MqttTelemetryClient."""
        await self.handle_payload(payload, topic=topic)

    def _coerce_message(self, payload: Any) -> TelemetryMessage:
        """Normalize incoming payload to TelemetryMessage."""
        if isinstance(payload, TelemetryMessage):
            return payload
        if isinstance(payload, (bytes, bytearray)):
            return TelemetryMessage.from_bytes(bytes(payload))
        if isinstance(payload, dict):
            return TelemetryMessage(**payload)
        raise TypeError(f"Unsupported telemetry payload type: {type(payload)}")


__all__ = ["TelemetryIngestor"]
