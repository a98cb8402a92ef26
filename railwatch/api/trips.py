"""Trip search API endpoints."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from railwatch.api.errors import feed_unavailable
from railwatch.core.config import ConfigurationError
from railwatch.core.database import get_db
from railwatch.schemas.trips import RouteOption
from railwatch.services.ns_client import FeedUnavailableError, NsApiClient, get_ns_client
from railwatch.services.trip_option_service import TripOptionService

router = APIRouter(prefix="/trips", tags=["trips"])


@router.get("/options", response_model=list[RouteOption])
async def get_route_options(
    origin: str = Query(..., min_length=1, description="Origin station code"),
    destination: str = Query(..., min_length=1, description="Destination station code"),
    db: AsyncSession = Depends(get_db),
    ns_client: NsApiClient = Depends(get_ns_client),
) -> list[RouteOption]:
    """
    Distinct route options between two stations.

    Args:
        origin: Origin station code
        destination: Destination station code
        db: Database session
        ns_client: NS API client

    Returns:
        Up to five route options in the order NS returns them

    Raises:
        HTTPException: 503 if the NS trip feed fails or is not configured
    """
    service = TripOptionService(db, ns_client)
    try:
        return await service.fetch_route_options(origin, destination)
    except (FeedUnavailableError, ConfigurationError) as e:
        raise feed_unavailable(e) from e
