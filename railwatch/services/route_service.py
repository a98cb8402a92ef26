"""Route management service."""

import uuid
from dataclasses import dataclass
from datetime import date
from typing import TypedDict

import structlog
from sqlalchemy import distinct, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from railwatch.core.database import upsert_insert
from railwatch.helpers.schedule_helpers import is_route_scheduled_on
from railwatch.models.disruption import Disruption
from railwatch.models.route import Route, RouteStation, RouteStatus
from railwatch.schemas.routes import CreateRouteRequest, UpdateRouteRequest
from railwatch.schemas.trips import StationRef

logger = structlog.get_logger(__name__)

# Constants
MIN_ROUTE_STATIONS = 2


class RouteNotFoundError(LookupError):
    """No route exists with the requested id."""

    def __init__(self, route_id: uuid.UUID) -> None:
        """
        Initialize the error.

        Args:
            route_id: Route UUID that was looked up
        """
        super().__init__(f"Route {route_id} not found")
        self.route_id = route_id


@dataclass(frozen=True)
class RouteOverview:
    """A route with its badge status and number of active disruptions."""

    route: Route
    status: RouteStatus | None
    active_disruption_count: int


class RouteStats(TypedDict):
    """Counts shown on the route overview."""

    total_routes: int
    active_disruptions: int
    routes_with_disruptions: int


def route_station_refs(request: CreateRouteRequest) -> list[StationRef]:
    """
    Ordered stations for a new route.

    Stations from a chosen route option are used when at least two are
    supplied; otherwise the route is just origin and destination.

    Args:
        request: Route creation request

    Returns:
        Stations in travel order
    """
    if request.stations and len(request.stations) >= MIN_ROUTE_STATIONS:
        return list(request.stations)
    return [
        StationRef(code=request.origin_code, name=request.origin_name),
        StationRef(code=request.destination_code, name=request.destination_name),
    ]


class RouteService:
    """Service for managing monitored routes."""

    def __init__(self, db: AsyncSession) -> None:
        """
        Initialize the route service.

        Args:
            db: Database session
        """
        self.db = db

    async def get_route(self, route_id: uuid.UUID) -> Route:
        """
        Get a route with its stations and status loaded.

        Args:
            route_id: Route UUID

        Returns:
            Route object

        Raises:
            RouteNotFoundError: If the route does not exist
        """
        if not (route := await self.get_route_internal(route_id)):
            raise RouteNotFoundError(route_id)
        return route

    async def get_route_internal(self, route_id: uuid.UUID) -> Route | None:
        """
        Get a route and its ordered stations, or None.

        Used by the sync cycle, which treats a missing route as a no-op
        rather than an error response.
        """
        result = await self.db.execute(
            select(Route)
            .where(Route.id == route_id)
            .options(selectinload(Route.stations), selectinload(Route.status))
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def create_route(self, request: CreateRouteRequest) -> Route:
        """
        Create a route, its stations and an initial status row.

        Args:
            request: Route creation request

        Returns:
            Created route with stations loaded
        """
        route = Route(
            name=request.name,
            origin_code=request.origin_code,
            origin_name=request.origin_name,
            destination_code=request.destination_code,
            destination_name=request.destination_name,
            schedule_days=list(request.schedule_days),
            departure_time=request.departure_time,
            urgency_level=request.urgency_level.value,
        )
        self.db.add(route)
        await self.db.flush()

        for position, station in enumerate(route_station_refs(request)):
            self.db.add(
                RouteStation(
                    route_id=route.id,
                    station_code=station.code,
                    station_name=station.name,
                    position=position,
                )
            )

        # Never checked yet; both badge flags start cleared
        self.db.add(
            RouteStatus(
                route_id=route.id,
                last_checked_at=None,
                has_active_disruptions=False,
                changed_since_last_view=False,
            )
        )
        await self.db.commit()

        logger.info("route_created", route_id=str(route.id), name=route.name)
        return await self.get_route(route.id)

    async def update_route(self, route_id: uuid.UUID, request: UpdateRouteRequest) -> Route:
        """
        Update route metadata; only fields present in the request change.

        Args:
            route_id: Route UUID
            request: Update request

        Returns:
            Updated route

        Raises:
            RouteNotFoundError: If the route does not exist
        """
        route = await self.get_route(route_id)

        if request.name is not None:
            route.name = request.name
        if request.schedule_days is not None:
            route.schedule_days = list(request.schedule_days)
        if request.departure_time is not None:
            route.departure_time = request.departure_time
        if request.urgency_level is not None:
            route.urgency_level = request.urgency_level.value

        await self.db.commit()
        logger.info("route_updated", route_id=str(route_id))
        return await self.get_route(route_id)

    async def delete_route(self, route_id: uuid.UUID) -> None:
        """
        Delete a route together with its stations, disruptions and status.

        Raises:
            RouteNotFoundError: If the route does not exist
        """
        result = await self.db.execute(
            select(Route)
            .where(Route.id == route_id)
            .options(
                selectinload(Route.stations),
                selectinload(Route.disruptions),
                selectinload(Route.status),
            )
        )
        if not (route := result.scalar_one_or_none()):
            raise RouteNotFoundError(route_id)

        await self.db.delete(route)
        await self.db.commit()
        logger.info("route_deleted", route_id=str(route_id))

    async def list_routes_with_status(self) -> list[RouteOverview]:
        """
        List every route with its status and active disruption count.

        Returns:
            Overviews, newest route first
        """
        routes_result = await self.db.execute(
            select(Route)
            .options(selectinload(Route.stations), selectinload(Route.status))
            .order_by(Route.created_at.desc())
            .execution_options(populate_existing=True)
        )
        routes = list(routes_result.scalars().all())

        counts_result = await self.db.execute(
            select(Disruption.route_id, func.count())
            .where(Disruption.is_active.is_(True))
            .group_by(Disruption.route_id)
        )
        active_counts: dict[uuid.UUID, int] = {route_id: count for route_id, count in counts_result.all()}

        return [
            RouteOverview(
                route=route,
                status=route.status,
                active_disruption_count=active_counts.get(route.id, 0),
            )
            for route in routes
        ]

    async def get_route_disruptions(self, route_id: uuid.UUID, is_active: bool | None = None) -> list[Disruption]:
        """
        Stored disruptions for a route, most recently seen first.

        Args:
            route_id: Route UUID
            is_active: Filter on active state; None returns history as well

        Returns:
            Disruptions sorted by last_seen descending

        Raises:
            RouteNotFoundError: If the route does not exist
        """
        await self.get_route(route_id)

        query = select(Disruption).where(Disruption.route_id == route_id)
        if is_active is not None:
            query = query.where(Disruption.is_active.is_(is_active))

        result = await self.db.execute(
            query.order_by(Disruption.last_seen.desc()).execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def mark_route_viewed(self, route_id: uuid.UUID) -> RouteStatus:
        """
        Record that the user has seen the route's current state.

        This is the only action that clears ``changed_since_last_view``.

        Raises:
            RouteNotFoundError: If the route does not exist
        """
        await self.get_route(route_id)

        stmt = upsert_insert(self.db, RouteStatus).values(
            id=uuid.uuid4(),
            route_id=route_id,
            changed_since_last_view=False,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[RouteStatus.route_id],
            set_={"changed_since_last_view": False},
        )
        await self.db.execute(stmt)
        await self.db.commit()

        result = await self.db.execute(
            select(RouteStatus)
            .where(RouteStatus.route_id == route_id)
            .execution_options(populate_existing=True)
        )
        logger.info("route_marked_viewed", route_id=str(route_id))
        return result.scalar_one()

    async def get_routes_for_today(self, today: date) -> list[Route]:
        """
        Routes whose schedule includes ``today``.

        Args:
            today: Local date in the route timezone

        Returns:
            Scheduled routes with stations loaded
        """
        result = await self.db.execute(
            select(Route).options(selectinload(Route.stations)).order_by(Route.departure_time)
        )
        return [route for route in result.scalars().all() if is_route_scheduled_on(route.schedule_days, today)]

    async def get_stats(self) -> RouteStats:
        """Route count, active disruption count and routes with active disruptions."""
        total_routes = (await self.db.execute(select(func.count()).select_from(Route))).scalar_one()
        active_disruptions = (
            await self.db.execute(select(func.count()).select_from(Disruption).where(Disruption.is_active.is_(True)))
        ).scalar_one()
        routes_with_disruptions = (
            await self.db.execute(
                select(func.count(distinct(Disruption.route_id))).where(Disruption.is_active.is_(True))
            )
        ).scalar_one()

        return RouteStats(
            total_routes=total_routes,
            active_disruptions=active_disruptions,
            routes_with_disruptions=routes_with_disruptions,
        )
