"""
twinsync - service entry point
Digital twin state synchronization over MQTT telemetry.
"""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import make_asgi_app

from twinsync import __version__
from twinsync.api import api_router
from twinsync.core.config import get_settings
from twinsync.core.twin.connectivity import MqttTelemetryClient
from twinsync.core.twin.factory import close_service, get_ingestor, mqtt_config
from twinsync.utils.logging import setup_logging

settings = get_settings()
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting twins service...")
    telemetry_client = None
    if settings.TELEMETRY_MQTT_ENABLED:
        telemetry_client = MqttTelemetryClient(mqtt_config(settings))
        await telemetry_client.start(settings.TELEMETRY_TOPICS, get_ingestor().handle_mqtt)
        if not await telemetry_client.wait_subscribed():
            logger.warning("Telemetry subscription not confirmed yet for %s", settings.TELEMETRY_TOPICS)

    yield

    logger.info("Shutting down twins service...")
    if telemetry_client is not None:
        await telemetry_client.stop()
    await close_service()


app = FastAPI(
    title="twinsync",
    description="Digital twin state synchronization service",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix="/api")
app.mount("/metrics", make_asgi_app())


@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "version": __version__,
        "services": {
            "store": settings.TWINS_STORE_BACKEND,
            "auth": settings.AUTH_MODE,
            "notifications": "mqtt" if settings.TWINS_NOTIFY_ENABLED else "disabled",
            "telemetry": "mqtt" if settings.TELEMETRY_MQTT_ENABLED else "http",
        },
    }


def run() -> None:
    uvicorn.run(
        "twinsync.main:app",
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    run()
