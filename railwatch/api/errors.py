"""Translation of domain errors into HTTP responses."""

import structlog
from fastapi import HTTPException, status

from railwatch.core.config import ConfigurationError
from railwatch.services.ns_client import FeedUnavailableError
from railwatch.services.route_service import RouteNotFoundError

logger = structlog.get_logger(__name__)


def route_not_found(error: RouteNotFoundError) -> HTTPException:
    """404 for a route id that does not exist."""
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"Route {error.route_id} not found.",
    )


def feed_unavailable(error: FeedUnavailableError | ConfigurationError) -> HTTPException:
    """503 for an NS feed that failed or cannot be called."""
    logger.error("ns_feed_unavailable", error=str(error), error_type=type(error).__name__)
    if isinstance(error, ConfigurationError):
        detail = "NS API is not configured."
    else:
        detail = f"NS API unavailable: {error!s}"
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=detail)
