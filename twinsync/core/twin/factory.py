"""
Construction of the long-lived twins service and its collaborators.

Repositories, the identity verifier and the notification channel are built
once from settings and shared by every request and telemetry message.
"""

from __future__ import annotations

import logging
from typing import Optional, Tuple

import redis.asyncio as redis

from twinsync.core.config import Settings, get_settings
from twinsync.core.storage.states import (
    InMemoryStateRepository,
    RedisStateRepository,
    StateRepository,
)
from twinsync.core.storage.twins import (
    InMemoryTwinRepository,
    RedisTwinRepository,
    TwinRepository,
)
from twinsync.core.twin.auth import (
    HttpIdentityConfig,
    HttpIdentityVerifier,
    IdentityVerifier,
    StaticIdentityVerifier,
)
from twinsync.core.twin.connectivity import MqttConfig
from twinsync.core.twin.ingest import TelemetryIngestor
from twinsync.core.twin.middleware import LoggingMiddleware, MetricsMiddleware
from twinsync.core.twin.notify import (
    MqttNotificationChannel,
    NotificationChannel,
    NullNotificationChannel,
)
from twinsync.core.twin.service import Service, TwinsService

logger = logging.getLogger(__name__)


def mqtt_config(settings: Settings) -> MqttConfig:
    return MqttConfig(
        host=settings.MQTT_HOST,
        port=settings.MQTT_PORT,
        username=settings.MQTT_USERNAME,
        password=settings.MQTT_PASSWORD,
        cafile=settings.MQTT_CAFILE,
        qos=settings.MQTT_QOS,
        client_id=settings.MQTT_CLIENT_ID,
    )


def build_repositories(settings: Settings) -> Tuple[TwinRepository, StateRepository]:
    backend = settings.TWINS_STORE_BACKEND.lower()
    if backend == "redis":
        client = redis.from_url(settings.REDIS_URL, decode_responses=True)
        prefix = settings.REDIS_KEY_PREFIX
        return RedisTwinRepository(client, prefix), RedisStateRepository(client, prefix)
    if backend != "memory":
        logger.warning("Unknown TWINS_STORE_BACKEND=%s; falling back to memory", backend)
    return InMemoryTwinRepository(), InMemoryStateRepository()


def build_identity_verifier(settings: Settings) -> IdentityVerifier:
    mode = settings.AUTH_MODE.lower()
    if mode == "http":
        return HttpIdentityVerifier(
            HttpIdentityConfig(base_url=settings.AUTH_URL, timeout_seconds=settings.AUTH_TIMEOUT_SECONDS)
        )
    if mode != "static":
        logger.warning("Unknown AUTH_MODE=%s; falling back to static tokens", mode)
    return StaticIdentityVerifier(settings.AUTH_STATIC_TOKENS)


def build_notifier(settings: Settings) -> NotificationChannel:
    if settings.TWINS_NOTIFY_ENABLED:
        return MqttNotificationChannel(settings.TWINS_CHANNEL_ID, mqtt_config(settings))
    return NullNotificationChannel()


def build_service(settings: Settings) -> Service:
    twins, states = build_repositories(settings)
    svc = TwinsService(
        auth=build_identity_verifier(settings),
        twins=twins,
        states=states,
        notifier=build_notifier(settings),
    )
    return MetricsMiddleware(LoggingMiddleware(svc))


# Shared service and ingestor for routers/tests
_service: Optional[Service] = None
_ingestor: Optional[TelemetryIngestor] = None


def get_service() -> Service:
    global _service
    if _service is None:
        _service = build_service(get_settings())
    return _service


def get_ingestor() -> TelemetryIngestor:
    global _ingestor
    if _ingestor is None:
        _ingestor = TelemetryIngestor(get_service())
    return _ingestor


def core_service(svc: Service) -> TwinsService:
    """Unwrap middlewares down to the TwinsService."""
    while not isinstance(svc, TwinsService):
        svc = svc.svc  # type: ignore[attr-defined]
    return svc


async def close_service() -> None:
    """Release network clients held by the shared service."""
    if _service is None:
        return
    svc = core_service(_service)
    for collaborator in (svc.notifier, svc.auth, svc.twins):
        close = getattr(collaborator, "close", None)
        if close is not None:
            await close()


def reset_service_for_tests() -> None:
    """Drop the shared service so the next call rebuilds it from settings."""
    global _service, _ingestor
    _service = None
    _ingestor = None


__all__ = [
    "mqtt_config",
    "build_repositories",
    "build_identity_verifier",
    "build_notifier",
    "build_service",
    "get_service",
    "get_ingestor",
    "core_service",
    "close_service",
    "reset_service_for_tests",
]
