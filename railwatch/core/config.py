"""Application configuration."""

import logging

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(ValueError):
    """Raised when a required configuration value is missing or blank."""


def _validate_level_name(v: str, field_name: str) -> str:
    """Normalize a stdlib log level name, rejecting unknown names."""
    normalized = v.upper()
    valid_levels = logging.getLevelNamesMapping()
    if normalized not in valid_levels:
        msg = f"Invalid {field_name} '{v}'. Must be one of: {', '.join(sorted(valid_levels.keys()))}"
        raise ValueError(msg)
    return normalized


class Settings(BaseSettings):
    """Application settings from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # API Settings
    API_V1_PREFIX: str = "/api/v1"
    PROJECT_NAME: str = "RailWatch"
    DEBUG: bool = False
    ALLOWED_ORIGINS: str = "http://localhost:5173"

    @field_validator("ALLOWED_ORIGINS", mode="after")
    @classmethod
    def parse_cors(cls, v: str | list[str]) -> list[str]:
        """Parse comma-separated CORS origins or pass through list."""
        return v if isinstance(v, list) else [origin.strip() for origin in v.split(",")]

    # Database Settings
    DATABASE_URL: str = Field(validation_alias="SECRET_DATABASE_URL")
    DATABASE_ECHO: bool = False
    DATABASE_POOL_SIZE: int = 5
    DATABASE_MAX_OVERFLOW: int = 10

    # Redis backs the feed snapshot cache
    REDIS_URL: str = Field(default="redis://localhost:6379/0", validation_alias="SECRET_REDIS_URL")

    # NS API Settings
    NS_API_KEY: str | None = Field(default=None, validation_alias="SECRET_NS_API_KEY")
    NS_API_BASE_URL: str = "https://gateway.apiportal.ns.nl"
    NS_API_TIMEOUT: float = 10.0  # Seconds, applies to connect and read
    NS_STATION_COUNTRY_CODES: str = "nl,d,b"
    DISRUPTION_FEED_CACHE_TTL: int = 60  # Seconds a shared feed snapshot stays valid

    # Scheduling Settings
    ROUTE_TIMEZONE: str = "Europe/Amsterdam"

    # Celery Settings
    CELERY_BROKER_URL: str = Field(validation_alias="SECRET_CELERY_BROKER_URL")
    CELERY_RESULT_BACKEND: str = Field(validation_alias="SECRET_CELERY_RESULT_BACKEND")

    # Alembic Settings
    ALEMBIC_INI_PATH: str = "alembic.ini"

    # OpenTelemetry Settings
    OTEL_ENABLED: bool = True
    OTEL_SERVICE_NAME: str = "railwatch-backend"
    OTEL_ENVIRONMENT: str = "production"
    OTEL_EXPORTER_OTLP_TRACES_ENDPOINT: str | None = None
    OTEL_EXPORTER_OTLP_LOGS_ENDPOINT: str | None = None
    OTEL_EXPORTER_OTLP_HEADERS: str | None = Field(default=None, validation_alias="SECRET_OTEL_HEADERS")
    OTEL_EXCLUDED_URLS: str = "/health,/ready"

    # NOTSET exports every level
    OTEL_LOG_LEVEL: str = "NOTSET"

    @field_validator("OTEL_EXCLUDED_URLS", mode="after")
    @classmethod
    def parse_otel_excluded_urls(cls, v: str | list[str]) -> list[str]:
        """Parse comma-separated excluded URLs, dropping empty entries."""
        if isinstance(v, list):
            return [url for url in v if url]
        return [url.strip() for url in v.split(",") if url.strip()]

    @field_validator("OTEL_LOG_LEVEL", mode="after")
    @classmethod
    def validate_otel_log_level(cls, v: str) -> str:
        """Validate and normalize OTEL log level."""
        return _validate_level_name(v, "OTEL_LOG_LEVEL")

    # Logging Settings
    LOG_LEVEL: str = "INFO"

    @field_validator("LOG_LEVEL", mode="after")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate and normalize log level."""
        return _validate_level_name(v, "LOG_LEVEL")


settings = Settings()


def require_config(*field_names: str) -> None:
    """
    Validate that required configuration fields are set.

    Args:
        *field_names: Names of required configuration fields

    Raises:
        ConfigurationError: If any required field is missing, None or blank

    Example:
        from railwatch.core.config import require_config
        require_config("NS_API_KEY")
    """
    missing = []
    for field in field_names:
        value = getattr(settings, field, None)
        if value is None or (isinstance(value, str) and not value.strip()):
            missing.append(field)

    if missing:
        msg = f"Required configuration missing: {', '.join(missing)}"
        raise ConfigurationError(msg)
