"""
Outcome notifications for mutating twin operations.

``notify_outcome`` wraps an operation body; whatever way the body exits, the
channel is asked to publish exactly once with the final identity, error and
payload. Delivery is best-effort: publish failures are logged, never raised.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import AsyncIterator, Optional, Protocol

import aiomqtt

from twinsync.core.twin.connectivity import MqttConfig

logger = logging.getLogger(__name__)


class CrudOp(str, Enum):
    CREATE_SUCCESS = "create/success"
    CREATE_FAILURE = "create/failure"
    UPDATE_SUCCESS = "update/success"
    UPDATE_FAILURE = "update/failure"
    REMOVE_SUCCESS = "remove/success"
    REMOVE_FAILURE = "remove/failure"
    STATE_SUCCESS = "state/success"
    STATE_FAILURE = "state/failure"


class NotificationChannel(Protocol):
    async def publish(
        self,
        identity: str,
        error: Optional[BaseException],
        success_topic: str,
        failure_topic: str,
        payload: bytes,
    ) -> None: ...


@dataclass
class Outcome:
    """Mutable record the wrapped operation fills before it returns."""

    identity: str = ""
    payload: bytes = b""
    error: Optional[BaseException] = None


@asynccontextmanager
async def notify_outcome(
    channel: NotificationChannel,
    success_topic: CrudOp,
    failure_topic: CrudOp,
    identity: str = "",
) -> AsyncIterator[Outcome]:
    outcome = Outcome(identity=identity)
    try:
        yield outcome
    except BaseException as exc:
        outcome.error = exc
        raise
    finally:
        try:
            await channel.publish(
                outcome.identity,
                outcome.error,
                success_topic.value,
                failure_topic.value,
                outcome.payload,
            )
        except Exception:
            logger.warning(
                "Failed to publish outcome notification",
                exc_info=True,
                extra={"twin_id": outcome.identity, "topic": success_topic.value},
            )


class NullNotificationChannel:
    """Discards notifications; used when outcome publishing is disabled."""

    async def publish(  # pragma: no cover - trivial
        self,
        identity: str,
        error: Optional[BaseException],
        success_topic: str,
        failure_topic: str,
        payload: bytes,
    ) -> None:
        return


class MqttNotificationChannel:
    """Publishes outcomes to ``channels/{channel_id}/messages/{identity}/{op}``."""

    def __init__(self, channel_id: str, config: Optional[MqttConfig] = None) -> None:
        self.channel_id = channel_id
        self.config = config or MqttConfig()
        self._client: Optional[aiomqtt.Client] = None
        self._stack: Optional[AsyncExitStack] = None
        self._lock: Optional[asyncio.Lock] = None

    def _get_lock(self) -> asyncio.Lock:
        """Lazily create lock to avoid issues with missing event loop."""
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    def topic(self, identity: str, op: str) -> str:
        if identity:
            return f"channels/{self.channel_id}/messages/{identity}/{op}"
        return f"channels/{self.channel_id}/messages/{op}"

    async def connect(self) -> aiomqtt.Client:
        async with self._get_lock():
            if self._client is None:
                stack = AsyncExitStack()
                client = aiomqtt.Client(**self.config.client_kwargs("-notify"))
                await stack.enter_async_context(client)
                self._stack = stack
                self._client = client
                logger.info("Notification channel connected to %s:%s", self.config.host, self.config.port)
        return self._client

    async def publish(
        self,
        identity: str,
        error: Optional[BaseException],
        success_topic: str,
        failure_topic: str,
        payload: bytes,
    ) -> None:
        op = success_topic
        if error is not None:
            op = failure_topic
            payload = str(error).encode("utf-8")
        client = await self.connect()
        await client.publish(self.topic(identity, op), payload, qos=self.config.qos)

    async def close(self) -> None:
        async with self._get_lock():
            if self._stack is not None:
                await self._stack.aclose()
            self._stack = None
            self._client = None


__all__ = [
    "CrudOp",
    "NotificationChannel",
    "Outcome",
    "notify_outcome",
    "NullNotificationChannel",
    "MqttNotificationChannel",
]
