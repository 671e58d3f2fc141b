from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict

from devkit.observability import configure_logging
from devkit.timezone import configure_wib_timezone


class ServiceSettings(BaseSettings):
    model_config = SettingsConfigDict(extra="ignore")

    SERVICE_NAME: str = "service"
    LOG_LEVEL: str = "INFO"
    DATABASE_URL: str | None = None
    REDIS_URL: str | None = None
    JWT_SECRET_KEY: str = "dev-only-secret"
    INTERNAL_EVENT_HMAC_SECRET: str = ""
    IDENTITY_SERVICE_BASE_URL: str | None = None
    PROFILE_SERVICE_BASE_URL: str | None = None

    PROFILE_RESOLVE_TIMEOUT_SECONDS: float = 5.0
    PROFILE_RECONCILE_ATTEMPTS: int = 1
    PROFILE_RECONCILE_BASE_DELAY_SECONDS: float = 0.0


def load_settings(service_name: str) -> ServiceSettings:
    configure_wib_timezone()
    settings = ServiceSettings(SERVICE_NAME=service_name)
    configure_logging(settings.LOG_LEVEL)
    return settings
