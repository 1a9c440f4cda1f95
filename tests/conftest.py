import os
from typing import Any, Dict, List, Optional

import pytest

from twinsync.core.storage.states import InMemoryStateRepository
from twinsync.core.storage.twins import InMemoryTwinRepository
from twinsync.core.twin.auth import StaticIdentityVerifier
from twinsync.core.twin.service import TwinsService


# List of environment variables that may be modified by tests
_ENV_VARS_TO_ISOLATE = [
    "LOG_LEVEL",
    "TWINS_STORE_BACKEND",
    "REDIS_URL",
    "AUTH_MODE",
    "AUTH_STATIC_TOKENS",
    "AUTH_URL",
    "TWINS_NOTIFY_ENABLED",
    "TWINS_CHANNEL_ID",
    "TELEMETRY_MQTT_ENABLED",
    "MQTT_HOST",
    "MQTT_PORT",
]

TOKENS = {"alice-token": "alice", "bob-token": "bob"}


@pytest.fixture(autouse=True)
def env_isolation():
    """Isolate environment variables between tests."""
    backup = {k: os.environ.get(k) for k in _ENV_VARS_TO_ISOLATE}
    try:
        yield
    finally:
        for k, v in backup.items():
            if v is None:
                os.environ.pop(k, None)
            else:
                os.environ[k] = v


@pytest.fixture(autouse=True)
def config_cache_isolation():
    """Reset config settings cache between tests."""
    import twinsync.core.config as cfg

    backup_cache = cfg._settings_cache
    cfg._settings_cache = None
    yield
    cfg._settings_cache = backup_cache


@pytest.fixture(autouse=True)
def service_isolation():
    """Reset the shared service singleton between tests."""
    from twinsync.core.twin.factory import reset_service_for_tests

    reset_service_for_tests()
    yield
    reset_service_for_tests()


class RecordingChannel:
    """Notification channel that keeps every published outcome."""

    def __init__(self, fail: bool = False) -> None:
        self.events: List[Dict[str, Any]] = []
        self.fail = fail

    async def publish(
        self,
        identity: str,
        error: Optional[BaseException],
        success_topic: str,
        failure_topic: str,
        payload: bytes,
    ) -> None:
        self.events.append(
            {
                "identity": identity,
                "error": error,
                "topic": failure_topic if error is not None else success_topic,
                "payload": payload,
            }
        )
        if self.fail:
            raise ConnectionError("broker unavailable")

    @property
    def topics(self) -> List[str]:
        return [e["topic"] for e in self.events]


class SequentialIds:
    def __init__(self) -> None:
        self.counter = 0

    def id(self) -> str:
        self.counter += 1
        return f"twin-{self.counter}"


@pytest.fixture
def channel() -> RecordingChannel:
    return RecordingChannel()


@pytest.fixture
def twin_repo() -> InMemoryTwinRepository:
    return InMemoryTwinRepository()


@pytest.fixture
def state_repo() -> InMemoryStateRepository:
    return InMemoryStateRepository()


@pytest.fixture
def failing_channel() -> RecordingChannel:
    return RecordingChannel(fail=True)


@pytest.fixture
def make_service(twin_repo, state_repo, channel):
    """Build a TwinsService over the in-memory repositories; collaborators can be swapped."""

    def _make(**overrides: Any) -> TwinsService:
        kwargs: Dict[str, Any] = {
            "auth": StaticIdentityVerifier(TOKENS),
            "twins": twin_repo,
            "states": state_repo,
            "notifier": channel,
            "idp": SequentialIds(),
        }
        kwargs.update(overrides)
        return TwinsService(**kwargs)

    return _make


@pytest.fixture
def service(make_service) -> TwinsService:
    return make_service()
