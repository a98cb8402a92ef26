"""Routes API endpoints for managing monitored commute routes."""

from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from railwatch.api.errors import feed_unavailable, route_not_found
from railwatch.core.config import ConfigurationError
from railwatch.core.database import get_db
from railwatch.models.disruption import Disruption
from railwatch.models.route import Route
from railwatch.schemas.routes import (
    CreateRouteRequest,
    DisruptionResponse,
    RouteCheckResponse,
    RouteResponse,
    RouteStatsResponse,
    RouteStatusResponse,
    RouteWithStatusResponse,
    UpdateRouteRequest,
)
from railwatch.services.disruption_sync_service import DisruptionSyncService
from railwatch.services.ns_client import FeedUnavailableError, NsApiClient, get_ns_client
from railwatch.services.route_service import RouteNotFoundError, RouteOverview, RouteService

router = APIRouter(prefix="/routes", tags=["routes"])


def _overview_response(overview: RouteOverview) -> RouteWithStatusResponse:
    route_data = RouteResponse.model_validate(overview.route).model_dump()
    route_status = (
        RouteStatusResponse.model_validate(overview.status) if overview.status is not None else RouteStatusResponse()
    )
    return RouteWithStatusResponse(
        **route_data,
        status=route_status,
        active_disruption_count=overview.active_disruption_count,
    )


# ==================== Route Endpoints ====================


@router.get("", response_model=list[RouteWithStatusResponse])
async def list_routes(db: AsyncSession = Depends(get_db)) -> list[RouteWithStatusResponse]:
    """
    List all routes with their badge status.

    Routes that have never been checked get a default status.

    Args:
        db: Database session

    Returns:
        Routes with status and active disruption count, newest first
    """
    service = RouteService(db)
    return [_overview_response(overview) for overview in await service.list_routes_with_status()]


@router.post("", response_model=RouteResponse, status_code=status.HTTP_201_CREATED)
async def create_route(
    request: CreateRouteRequest,
    db: AsyncSession = Depends(get_db),
) -> Route:
    """
    Create a new monitored route.

    Args:
        request: Route creation request
        db: Database session

    Returns:
        Created route with its ordered stations
    """
    service = RouteService(db)
    return await service.create_route(request)


@router.get("/stats", response_model=RouteStatsResponse)
async def get_stats(db: AsyncSession = Depends(get_db)) -> RouteStatsResponse:
    """Route and disruption counts for the overview header."""
    service = RouteService(db)
    return RouteStatsResponse(**await service.get_stats())


@router.get("/{route_id}", response_model=RouteResponse)
async def get_route(route_id: UUID, db: AsyncSession = Depends(get_db)) -> Route:
    """
    Get a single route.

    Raises:
        HTTPException: 404 if the route does not exist
    """
    service = RouteService(db)
    try:
        return await service.get_route(route_id)
    except RouteNotFoundError as e:
        raise route_not_found(e) from e


@router.patch("/{route_id}", response_model=RouteResponse)
async def update_route(
    route_id: UUID,
    request: UpdateRouteRequest,
    db: AsyncSession = Depends(get_db),
) -> Route:
    """
    Update route metadata.

    Args:
        route_id: Route UUID
        request: Fields to update
        db: Database session

    Returns:
        Updated route

    Raises:
        HTTPException: 404 if the route does not exist
    """
    service = RouteService(db)
    try:
        return await service.update_route(route_id, request)
    except RouteNotFoundError as e:
        raise route_not_found(e) from e


@router.delete("/{route_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_route(route_id: UUID, db: AsyncSession = Depends(get_db)) -> None:
    """
    Delete a route along with its stations, disruptions and status.

    Raises:
        HTTPException: 404 if the route does not exist
    """
    service = RouteService(db)
    try:
        await service.delete_route(route_id)
    except RouteNotFoundError as e:
        raise route_not_found(e) from e


# ==================== Disruption Endpoints ====================


@router.get("/{route_id}/disruptions", response_model=list[DisruptionResponse])
async def get_route_disruptions(
    route_id: UUID,
    active: bool | None = Query(None, description="Filter on active state; omit for full history"),
    db: AsyncSession = Depends(get_db),
) -> list[Disruption]:
    """
    Stored disruptions for a route, most recently seen first.

    Args:
        route_id: Route UUID
        active: Optional active-state filter
        db: Database session

    Returns:
        Disruptions for the route

    Raises:
        HTTPException: 404 if the route does not exist
    """
    service = RouteService(db)
    try:
        return await service.get_route_disruptions(route_id, is_active=active)
    except RouteNotFoundError as e:
        raise route_not_found(e) from e


@router.post("/{route_id}/viewed", response_model=RouteStatusResponse)
async def mark_route_viewed(route_id: UUID, db: AsyncSession = Depends(get_db)) -> RouteStatusResponse:
    """
    Clear the "changed since last view" badge of a route.

    Raises:
        HTTPException: 404 if the route does not exist
    """
    service = RouteService(db)
    try:
        route_status = await service.mark_route_viewed(route_id)
    except RouteNotFoundError as e:
        raise route_not_found(e) from e
    return RouteStatusResponse.model_validate(route_status)


@router.post("/{route_id}/check", response_model=RouteCheckResponse)
async def check_route(
    route_id: UUID,
    db: AsyncSession = Depends(get_db),
    ns_client: NsApiClient = Depends(get_ns_client),
) -> RouteCheckResponse:
    """
    Run a disruption sync for a route right now.

    Manual checks always read the live feed rather than a cached snapshot.

    Raises:
        HTTPException: 404 if the route does not exist, 503 if the NS feed fails
    """
    service = DisruptionSyncService(db, ns_client)
    try:
        result = await service.sync_route(route_id, use_cache=False)
    except RouteNotFoundError as e:
        raise route_not_found(e) from e
    except (FeedUnavailableError, ConfigurationError) as e:
        raise feed_unavailable(e) from e

    return RouteCheckResponse(
        route_id=result.route_id,
        disruptions_found=result.disruptions_found,
        created=result.created,
        reactivated=result.reactivated,
        content_changed=result.content_changed,
        deactivated=result.deactivated,
        changed=result.changed,
        has_active_disruptions=result.has_active_disruptions,
    )
