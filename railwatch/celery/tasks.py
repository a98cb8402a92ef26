"""Celery tasks for background processing.

Each route is checked by its own task so routes are synced independently and
in parallel across workers. Feed failures are retried by re-running the whole
cycle for that route later.
"""

from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any, Protocol, TypedDict, TypeVar
from uuid import UUID

import structlog

from railwatch.celery.app import celery_app
from railwatch.celery.database import get_worker_feed_cache, get_worker_loop, get_worker_session
from railwatch.core.utils import utc_now
from railwatch.helpers.schedule_helpers import follow_up_check_delays, local_today
from railwatch.services.disruption_sync_service import DisruptionSyncService
from railwatch.services.ns_client import FeedUnavailableError, NsApiClient
from railwatch.services.route_service import RouteNotFoundError, RouteService
from railwatch.services.station_service import StationService

logger = structlog.get_logger(__name__)

# Seconds before a route check whose feed call failed is attempted again
FEED_RETRY_COUNTDOWN = 60

T = TypeVar("T")


def run_in_worker_loop(
    coro_func: Callable[..., Awaitable[T]],
    *args: Any,  # noqa: ANN401 - Pass-through args to async function
    **kwargs: Any,  # noqa: ANN401 - Pass-through kwargs to async function
) -> T:
    """
    Run an async function in the worker's persistent event loop.

    Args:
        coro_func: An async function (not coroutine) to execute
        *args: Positional arguments to pass to the async function
        **kwargs: Keyword arguments to pass to the async function

    Returns:
        The return value of the async function

    Raises:
        RuntimeError: If worker not initialized or event loop is closed
    """
    loop = get_worker_loop()
    coro = coro_func(*args, **kwargs)
    return loop.run_until_complete(coro)


class TaskRequest(Protocol):
    """Protocol for Celery task request object."""

    @property
    def retries(self) -> int:
        """Number of times task has been retried."""
        ...


class BoundTask(Protocol):
    """Protocol for Celery bound task self parameter."""

    @property
    def request(self) -> TaskRequest:
        """Task request object."""
        ...

    def retry(self, exc: Exception | None = None, countdown: int | None = None) -> Exception:
        """
        Retry the task.

        This method raises an exception to signal task retry.
        """
        ...


# Type definitions for task return values
class RouteCheckResult(TypedDict):
    """Result from check_route_disruptions task."""

    status: str
    route_id: str
    disruptions_found: int
    changed: bool
    has_active_disruptions: bool


class TodayChecksResult(TypedDict):
    """Result from check_routes_for_today task."""

    status: str
    routes_dispatched: int
    follow_ups_scheduled: int


class StationSyncTaskResult(TypedDict):
    """Result from sync_all_stations task."""

    status: str
    synced: int
    total: int


# ==================== Route Checks ====================


@celery_app.task(  # type: ignore[arg-type]
    bind=True,
    max_retries=3,
    name="railwatch.celery.tasks.check_route_disruptions",
)
def check_route_disruptions(self: BoundTask, route_id: str, use_cache: bool = True) -> RouteCheckResult:
    """
    Run one disruption sync cycle for a route.

    Only feed failures are retried; a route deleted since the check was queued
    is logged and skipped.

    Args:
        self: Celery task instance (bound via bind=True)
        route_id: Route UUID as a string
        use_cache: Share the feed snapshot with other checks queued together

    Returns:
        RouteCheckResult: Outcome of the sync cycle

    Raises:
        Retry: If the NS feed was unavailable
    """
    try:
        result = run_in_worker_loop(_check_route_async, UUID(route_id), use_cache)
    except RouteNotFoundError:
        logger.warning("check_route_task_route_missing", route_id=route_id)
        return RouteCheckResult(
            status="skipped",
            route_id=route_id,
            disruptions_found=0,
            changed=False,
            has_active_disruptions=False,
        )
    except FeedUnavailableError as exc:
        logger.error(
            "check_route_task_feed_unavailable",
            route_id=route_id,
            error=str(exc),
            status_code=exc.status_code,
            retry_count=self.request.retries,
        )
        raise self.retry(exc=exc, countdown=FEED_RETRY_COUNTDOWN) from exc

    logger.info("check_route_task_completed", result=result)
    return result


async def _check_route_async(route_id: UUID, use_cache: bool) -> RouteCheckResult:
    session = None
    try:
        session = get_worker_session()
        async with NsApiClient(cache=get_worker_feed_cache()) as client:
            sync_result = await DisruptionSyncService(session, client).sync_route(route_id, use_cache=use_cache)

        return RouteCheckResult(
            status="success",
            route_id=str(route_id),
            disruptions_found=sync_result.disruptions_found,
            changed=sync_result.changed,
            has_active_disruptions=sync_result.has_active_disruptions,
        )

    finally:
        if session is not None:
            await session.close()


@celery_app.task(  # type: ignore[arg-type]
    name="railwatch.celery.tasks.check_routes_for_today",
)
def check_routes_for_today() -> TodayChecksResult:
    """
    Check every route scheduled for today and queue follow-up checks.

    One independent check task is dispatched per route right away, then
    further checks are queued with countdowns leading up to each route's
    departure according to its urgency level.

    Returns:
        TodayChecksResult: Number of routes and follow-up checks queued
    """
    now = utc_now()
    routes = run_in_worker_loop(_get_routes_for_today_async, now)

    follow_ups = 0
    for route_id, departure_time, urgency_level in routes:
        check_route_disruptions.delay(route_id)

        delays = follow_up_check_delays(departure_time, urgency_level, now)
        for delay in delays:
            check_route_disruptions.apply_async(args=[route_id], countdown=delay)
        follow_ups += len(delays)

        logger.info(
            "route_checks_scheduled",
            route_id=route_id,
            departure_time=departure_time,
            urgency_level=urgency_level,
            follow_ups=len(delays),
        )

    result = TodayChecksResult(
        status="success",
        routes_dispatched=len(routes),
        follow_ups_scheduled=follow_ups,
    )
    logger.info("check_routes_for_today_completed", result=result)
    return result


async def _get_routes_for_today_async(now: datetime) -> list[tuple[str, str, str]]:
    """Id, departure time and urgency of every route scheduled for today."""
    session = None
    try:
        session = get_worker_session()
        routes = await RouteService(session).get_routes_for_today(local_today(now))
        return [(str(route.id), route.departure_time, route.urgency_level) for route in routes]

    finally:
        if session is not None:
            await session.close()


# ==================== Station Directory ====================


@celery_app.task(  # type: ignore[arg-type]
    bind=True,
    max_retries=3,
    name="railwatch.celery.tasks.sync_all_stations",
)
def sync_all_stations(self: BoundTask) -> StationSyncTaskResult:
    """
    Refresh the station directory from the NS station feed.

    Args:
        self: Celery task instance (bound via bind=True)

    Returns:
        StationSyncTaskResult: Number of stations written and received

    Raises:
        Retry: If the NS feed was unavailable
    """
    try:
        result = run_in_worker_loop(_sync_all_stations_async)
    except FeedUnavailableError as exc:
        logger.error(
            "sync_stations_task_feed_unavailable",
            error=str(exc),
            status_code=exc.status_code,
            retry_count=self.request.retries,
        )
        raise self.retry(exc=exc, countdown=FEED_RETRY_COUNTDOWN) from exc

    logger.info("sync_stations_task_completed", result=result)
    return result


async def _sync_all_stations_async() -> StationSyncTaskResult:
    session = None
    try:
        session = get_worker_session()
        async with NsApiClient(cache=get_worker_feed_cache()) as client:
            sync_result = await StationService(session, client).sync_all_stations()

        return StationSyncTaskResult(
            status="success",
            synced=sync_result["synced"],
            total=sync_result["total"],
        )

    finally:
        if session is not None:
            await session.close()
