"""Runtime settings for the twins service.

Values are read from the environment (case-insensitive) and an optional
``.env`` file; ``get_settings`` caches the first instance.
"""

from typing import Dict, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    DEBUG: bool = False
    HOST: str = "0.0.0.0"
    PORT: int = 9021
    LOG_LEVEL: str = "INFO"

    # Web settings
    CORS_ORIGINS: list[str] = ["*"]

    # Twin/state repositories (memory|redis)
    TWINS_STORE_BACKEND: str = "memory"
    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_KEY_PREFIX: str = "twins"

    # Identity verification (static|http)
    AUTH_MODE: str = "static"
    AUTH_STATIC_TOKENS: Dict[str, str] = {}
    AUTH_URL: str = "http://localhost:8189"
    AUTH_TIMEOUT_SECONDS: float = 5.0

    # MQTT broker shared by notifications and telemetry
    MQTT_HOST: str = "localhost"
    MQTT_PORT: int = 1883
    MQTT_USERNAME: Optional[str] = None
    MQTT_PASSWORD: Optional[str] = None
    MQTT_CAFILE: Optional[str] = None
    MQTT_CLIENT_ID: str = "twinsync"
    MQTT_QOS: int = 1

    # Outcome notifications
    TWINS_NOTIFY_ENABLED: bool = False
    TWINS_CHANNEL_ID: str = "twins"

    # Telemetry subscription
    TELEMETRY_MQTT_ENABLED: bool = False
    TELEMETRY_TOPICS: list[str] = ["twins/telemetry/#"]

    model_config = {
        "env_file": ".env",
        "case_sensitive": False,
        "extra": "ignore",
    }


_settings_cache: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings_cache
    if _settings_cache is None:
        _settings_cache = Settings()
    return _settings_cache
