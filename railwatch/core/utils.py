"""Core utility functions."""

from datetime import UTC, datetime
from urllib.parse import urlparse, urlunparse
from zoneinfo import ZoneInfo

from railwatch.core.config import settings


def convert_async_db_url_to_sync(database_url: str) -> str:
    """
    Convert an async database URL to a sync database URL.

    Converts postgresql+asyncpg:// to postgresql+psycopg:// for Alembic, which
    runs migrations with a synchronous driver.

    Args:
        database_url: The async database URL (e.g., postgresql+asyncpg://...)

    Returns:
        The sync database URL (e.g., postgresql+psycopg://...)
    """
    parsed_url = urlparse(database_url)
    if "+asyncpg" in parsed_url.scheme:
        sync_scheme = parsed_url.scheme.replace("+asyncpg", "+psycopg")
        return urlunparse(parsed_url._replace(scheme=sync_scheme))
    return database_url


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def route_timezone() -> ZoneInfo:
    """Timezone in which route schedules and departure times are interpreted."""
    return ZoneInfo(settings.ROUTE_TIMEZONE)
