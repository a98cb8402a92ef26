"""Station directory API endpoints."""

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from railwatch.api.errors import feed_unavailable
from railwatch.core.config import ConfigurationError
from railwatch.core.database import get_db
from railwatch.models.station import Station
from railwatch.schemas.stations import StationCountResponse, StationResponse, StationSyncResponse
from railwatch.services.ns_client import FeedUnavailableError, NsApiClient, get_ns_client
from railwatch.services.station_service import StationService

router = APIRouter(prefix="/stations", tags=["stations"])


@router.get("/search", response_model=list[StationResponse])
async def search_stations(
    q: str = Query(..., description="Code, name or synonym; at least two characters"),
    db: AsyncSession = Depends(get_db),
) -> list[Station]:
    """
    Search the station directory.

    Args:
        q: Search text
        db: Database session

    Returns:
        Up to ten stations, exact code match first
    """
    service = StationService(db)
    return await service.search_stations(q)


@router.get("/count", response_model=StationCountResponse)
async def count_stations(db: AsyncSession = Depends(get_db)) -> StationCountResponse:
    """Number of stations in the directory."""
    service = StationService(db)
    return StationCountResponse(count=await service.count_stations())


@router.post("/sync", response_model=StationSyncResponse)
async def sync_stations(
    db: AsyncSession = Depends(get_db),
    ns_client: NsApiClient = Depends(get_ns_client),
) -> StationSyncResponse:
    """
    Refresh the station directory from the NS station feed.

    Raises:
        HTTPException: 503 if the NS feed fails or is not configured
    """
    service = StationService(db, ns_client)
    try:
        result = await service.sync_all_stations()
    except (FeedUnavailableError, ConfigurationError) as e:
        raise feed_unavailable(e) from e
    return StationSyncResponse(**result)


@router.get("/{code}", response_model=StationResponse)
async def get_station(code: str, db: AsyncSession = Depends(get_db)) -> Station:
    """
    Get a station by its code.

    Raises:
        HTTPException: 404 if the station is not in the directory
    """
    service = StationService(db)
    if not (station := await service.get_station_by_code(code.upper())):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Station '{code}' not found.",
        )
    return station
