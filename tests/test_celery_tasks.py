"""Tests for Celery tasks."""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import UUID, uuid4

import pytest
from freezegun import freeze_time

from railwatch.celery.tasks import (
    _check_route_async,
    _get_routes_for_today_async,
    _sync_all_stations_async,
    check_route_disruptions,
    check_routes_for_today,
    sync_all_stations,
)
from railwatch.services.disruption_sync_service import SyncResult
from railwatch.services.ns_client import FeedUnavailableError
from railwatch.services.route_service import RouteNotFoundError

# ==================== check_route_disruptions Tests ====================


@pytest.mark.asyncio
@patch("railwatch.celery.tasks.DisruptionSyncService")
@patch("railwatch.celery.tasks.NsApiClient")
@patch("railwatch.celery.tasks.get_worker_feed_cache")
@patch("railwatch.celery.tasks.get_worker_session")
async def test_check_route_async_success(
    mock_session_factory: MagicMock,
    mock_cache_func: MagicMock,
    mock_client_class: MagicMock,
    mock_sync_class: MagicMock,
) -> None:
    """The sync result is summarized and the session closed."""
    route_id = uuid4()
    mock_session = AsyncMock()
    mock_session_factory.return_value = mock_session

    mock_client = AsyncMock()
    mock_client_class.return_value.__aenter__.return_value = mock_client

    mock_sync = MagicMock()
    mock_sync.sync_route = AsyncMock(
        return_value=SyncResult(
            route_id=route_id,
            disruptions_found=2,
            created=1,
            reactivated=0,
            content_changed=0,
            deactivated=0,
            changed=True,
            has_active_disruptions=True,
        )
    )
    mock_sync_class.return_value = mock_sync

    result = await _check_route_async(route_id, True)

    assert result == {
        "status": "success",
        "route_id": str(route_id),
        "disruptions_found": 2,
        "changed": True,
        "has_active_disruptions": True,
    }
    mock_client_class.assert_called_once_with(cache=mock_cache_func.return_value)
    mock_sync_class.assert_called_once_with(mock_session, mock_client)
    mock_sync.sync_route.assert_awaited_once_with(route_id, use_cache=True)
    mock_session.close.assert_awaited_once()


@pytest.mark.asyncio
@patch("railwatch.celery.tasks.DisruptionSyncService")
@patch("railwatch.celery.tasks.NsApiClient")
@patch("railwatch.celery.tasks.get_worker_feed_cache")
@patch("railwatch.celery.tasks.get_worker_session")
async def test_check_route_async_closes_session_on_error(
    mock_session_factory: MagicMock,
    mock_cache_func: MagicMock,
    mock_client_class: MagicMock,
    mock_sync_class: MagicMock,
) -> None:
    """Errors propagate after the session is closed."""
    mock_session = AsyncMock()
    mock_session_factory.return_value = mock_session
    mock_client_class.return_value.__aenter__.return_value = AsyncMock()
    mock_sync_class.return_value.sync_route = AsyncMock(side_effect=FeedUnavailableError("boom", status_code=500))

    with pytest.raises(FeedUnavailableError):
        await _check_route_async(uuid4(), False)

    mock_session.close.assert_awaited_once()


@patch("railwatch.celery.tasks.run_in_worker_loop")
def test_check_route_task_returns_result(mock_run: MagicMock) -> None:
    """Successful runs return the async result unchanged."""
    route_id = str(uuid4())
    expected = {
        "status": "success",
        "route_id": route_id,
        "disruptions_found": 0,
        "changed": False,
        "has_active_disruptions": False,
    }
    mock_run.return_value = expected

    assert check_route_disruptions(route_id) == expected
    assert mock_run.call_args.args[1:] == (UUID(route_id), True)


@patch("railwatch.celery.tasks.run_in_worker_loop")
def test_check_route_task_skips_missing_route(mock_run: MagicMock) -> None:
    """A route deleted since the check was queued is not retried."""
    route_id = str(uuid4())
    mock_run.side_effect = RouteNotFoundError(uuid4())

    result = check_route_disruptions(route_id)

    assert result["status"] == "skipped"
    assert result["route_id"] == route_id


@patch("railwatch.celery.tasks.run_in_worker_loop")
def test_check_route_task_retries_on_feed_failure(mock_run: MagicMock) -> None:
    """Feed failures go through Celery's retry, which re-raises when called directly."""
    mock_run.side_effect = FeedUnavailableError("NS API returned 503", status_code=503)

    with patch("railwatch.celery.tasks.logger") as mock_logger, pytest.raises(FeedUnavailableError):
        check_route_disruptions(str(uuid4()))

    mock_logger.error.assert_called_once()
    assert mock_logger.error.call_args.args[0] == "check_route_task_feed_unavailable"
    assert mock_logger.error.call_args.kwargs["status_code"] == 503


@patch("railwatch.celery.tasks.run_in_worker_loop")
def test_check_route_task_propagates_unexpected_errors(mock_run: MagicMock) -> None:
    """Only feed failures are retried."""
    mock_run.side_effect = RuntimeError("Database connection lost")

    with pytest.raises(RuntimeError):
        check_route_disruptions(str(uuid4()))


# ==================== check_routes_for_today Tests ====================


@freeze_time("2024-01-08 06:00:00")  # Monday 07:00 in Amsterdam
@patch("railwatch.celery.tasks.check_route_disruptions")
@patch("railwatch.celery.tasks.run_in_worker_loop")
def test_check_routes_for_today_dispatches_checks(mock_run: MagicMock, mock_check_task: MagicMock) -> None:
    """Each route is checked now and again on its way to departure."""
    upcoming = str(uuid4())
    departed = str(uuid4())
    mock_run.return_value = [
        (departed, "06:30", "normal"),
        (upcoming, "08:00", "normal"),
    ]

    result = check_routes_for_today()

    assert result == {"status": "success", "routes_dispatched": 2, "follow_ups_scheduled": 5}
    assert mock_run.call_args.args[1] == datetime(2024, 1, 8, 6, 0, tzinfo=UTC)

    assert mock_check_task.delay.call_count == 2
    mock_check_task.delay.assert_any_call(upcoming)
    mock_check_task.delay.assert_any_call(departed)

    countdowns = [call.kwargs["countdown"] for call in mock_check_task.apply_async.call_args_list]
    assert countdowns == [600, 1200, 1800, 2400, 3000]
    assert all(call.kwargs["args"] == [upcoming] for call in mock_check_task.apply_async.call_args_list)


@patch("railwatch.celery.tasks.check_route_disruptions")
@patch("railwatch.celery.tasks.run_in_worker_loop")
def test_check_routes_for_today_nothing_scheduled(mock_run: MagicMock, mock_check_task: MagicMock) -> None:
    """No routes means nothing is queued."""
    mock_run.return_value = []

    result = check_routes_for_today()

    assert result["routes_dispatched"] == 0
    mock_check_task.delay.assert_not_called()
    mock_check_task.apply_async.assert_not_called()


@pytest.mark.asyncio
@patch("railwatch.celery.tasks.RouteService")
@patch("railwatch.celery.tasks.get_worker_session")
async def test_get_routes_for_today_async_uses_local_date(
    mock_session_factory: MagicMock,
    mock_route_service_class: MagicMock,
) -> None:
    """Late UTC evening is already the next day in Amsterdam."""
    mock_session = AsyncMock()
    mock_session_factory.return_value = mock_session
    route = MagicMock(id=uuid4(), departure_time="07:15", urgency_level="important")
    mock_route_service_class.return_value.get_routes_for_today = AsyncMock(return_value=[route])

    result = await _get_routes_for_today_async(datetime(2024, 1, 7, 23, 30, tzinfo=UTC))

    assert result == [(str(route.id), "07:15", "important")]
    called_date = mock_route_service_class.return_value.get_routes_for_today.call_args.args[0]
    assert called_date.isoformat() == "2024-01-08"
    mock_session.close.assert_awaited_once()


# ==================== sync_all_stations Tests ====================


@pytest.mark.asyncio
@patch("railwatch.celery.tasks.StationService")
@patch("railwatch.celery.tasks.NsApiClient")
@patch("railwatch.celery.tasks.get_worker_feed_cache")
@patch("railwatch.celery.tasks.get_worker_session")
async def test_sync_all_stations_async(
    mock_session_factory: MagicMock,
    mock_cache_func: MagicMock,
    mock_client_class: MagicMock,
    mock_station_service_class: MagicMock,
) -> None:
    """Station sync counts are passed through."""
    mock_session = AsyncMock()
    mock_session_factory.return_value = mock_session
    mock_client_class.return_value.__aenter__.return_value = AsyncMock()
    mock_station_service_class.return_value.sync_all_stations = AsyncMock(return_value={"synced": 398, "total": 400})

    result = await _sync_all_stations_async()

    assert result == {"status": "success", "synced": 398, "total": 400}
    mock_session.close.assert_awaited_once()


@patch("railwatch.celery.tasks.run_in_worker_loop")
def test_sync_all_stations_task_retries_on_feed_failure(mock_run: MagicMock) -> None:
    """Station feed failures are retried."""
    mock_run.side_effect = FeedUnavailableError("NS API returned 500", status_code=500)

    with pytest.raises(FeedUnavailableError):
        sync_all_stations()
