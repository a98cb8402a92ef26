"""Tests for the disruption sync cycle."""

import uuid
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from railwatch.helpers.disruption_helpers import MatchedDisruption
from railwatch.models.disruption import Disruption
from railwatch.models.route import RouteStatus
from railwatch.schemas.ns import NsDisruption
from railwatch.services.disruption_sync_service import (
    DisruptionSyncService,
    StoredDisruptionState,
    build_disruption_upsert,
    plan_reconciliation,
)
from railwatch.services.ns_client import FeedUnavailableError, NsApiClient
from railwatch.services.route_service import RouteNotFoundError, RouteService
from tests.helpers.ns_payloads import FakeNsFeed, disruption_record
from tests.helpers.types import RouteFactory

CYCLE_TIME = datetime(2024, 1, 1, 9, 0, tzinfo=UTC)


def _matched(record: dict, affected: list[str]) -> MatchedDisruption:
    return MatchedDisruption(disruption=NsDisruption.model_validate(record), affected_stations=affected)


async def _disruptions(db: AsyncSession, route_id: uuid.UUID) -> dict[str, Disruption]:
    result = await db.execute(
        select(Disruption).where(Disruption.route_id == route_id).execution_options(populate_existing=True)
    )
    return {row.external_disruption_id: row for row in result.scalars().all()}


async def _status(db: AsyncSession, route_id: uuid.UUID) -> RouteStatus:
    result = await db.execute(
        select(RouteStatus).where(RouteStatus.route_id == route_id).execution_options(populate_existing=True)
    )
    return result.scalar_one()


# ==================== plan_reconciliation ====================


class TestPlanReconciliation:
    """Pure change classification."""

    def test_new_disruption_is_created(self) -> None:
        """Nothing stored yet."""
        plan = plan_reconciliation({}, {"d1": _matched(disruption_record("d1", ["ASD"]), ["ASD"])})

        assert plan.created_ids == ["d1"]
        assert plan.active_ids == {"d1"}
        assert plan.changed

    def test_unchanged_active_disruption(self) -> None:
        """Same content, still active: no change."""
        matched = {"d1": _matched(disruption_record("d1", ["ASD"]), ["ASD"])}
        stored_hash = build_disruption_upsert(matched["d1"]).content_hash

        plan = plan_reconciliation({"d1": StoredDisruptionState(is_active=True, content_hash=stored_hash)}, matched)

        assert not plan.changed
        assert len(plan.upserts) == 1

    def test_content_change_detected(self) -> None:
        """An active disruption with a new fingerprint is a change."""
        matched = {"d1": _matched(disruption_record("d1", ["ASD"], title="Now worse"), ["ASD"])}

        plan = plan_reconciliation({"d1": StoredDisruptionState(is_active=True, content_hash="abc")}, matched)

        assert plan.content_changed_ids == ["d1"]
        assert plan.changed

    def test_inactive_disruption_reactivated(self) -> None:
        """Reappearing disruptions count as a change even with equal content."""
        matched = {"d1": _matched(disruption_record("d1", ["ASD"]), ["ASD"])}
        stored_hash = build_disruption_upsert(matched["d1"]).content_hash

        plan = plan_reconciliation({"d1": StoredDisruptionState(is_active=False, content_hash=stored_hash)}, matched)

        assert plan.reactivated_ids == ["d1"]
        assert plan.content_changed_ids == []
        assert plan.changed

    def test_missing_active_disruption_deactivated(self) -> None:
        """Stored active ids absent from the match are deactivated; inactive ones are left alone."""
        stored = {
            "d1": StoredDisruptionState(is_active=True, content_hash="abc"),
            "d2": StoredDisruptionState(is_active=False, content_hash="def"),
        }

        plan = plan_reconciliation(stored, {})

        assert plan.deactivated_ids == ["d1"]
        assert plan.upserts == []
        assert plan.changed

    def test_nothing_stored_nothing_matched(self) -> None:
        """An empty cycle changes nothing."""
        assert not plan_reconciliation({}, {}).changed


def test_build_disruption_upsert_fields() -> None:
    """Display fields, affected stations and fingerprint are derived from the feed record."""
    record = disruption_record(
        "d1",
        ["ASD"],
        disruption_type="MAINTENANCE",
        title="Track work",
        advice="Plan extra time",
        description="No trains between Amsterdam and Utrecht",
    )

    upsert = build_disruption_upsert(_matched(record, ["ASD"]))

    assert upsert.external_disruption_id == "d1"
    assert upsert.type == "MAINTENANCE"
    assert upsert.period == "01-01-2024 09:00 – 01-01-2024 11:00"
    assert upsert.advice == "Plan extra time"
    assert upsert.description == "No trains between Amsterdam and Utrecht"
    assert upsert.affected_stations == ["ASD"]
    assert upsert.content_hash


def test_build_disruption_upsert_blank_advice_is_none() -> None:
    """Missing advice is stored as NULL."""
    upsert = build_disruption_upsert(_matched(disruption_record("d1", ["ASD"]), ["ASD"]))

    assert upsert.advice is None


# ==================== sync_route ====================


@pytest.mark.asyncio
async def test_sync_route_end_to_end(
    route_factory: RouteFactory,
    ns_feed: FakeNsFeed,
    ns_client: NsApiClient,
    db_session: AsyncSession,
) -> None:
    """A matching disruption is stored and raises both badge flags."""
    route = await route_factory(["GVC", "ASD", "UT"])
    ns_feed.disruptions = [
        disruption_record(
            "d1",
            ["ASD"],
            disruption_type="MAINTENANCE",
            title="Track work",
            start="2024-01-01T08:00Z",
            end="2024-01-01T10:00Z",
        )
    ]

    result = await DisruptionSyncService(db_session, ns_client).sync_route(route.id, now=CYCLE_TIME)

    assert result.disruptions_found == 1
    assert result.created == 1
    assert result.changed
    assert result.has_active_disruptions

    stored = await _disruptions(db_session, route.id)
    assert set(stored) == {"d1"}
    assert stored["d1"].is_active
    assert stored["d1"].affected_stations == ["ASD"]
    assert stored["d1"].type == "MAINTENANCE"
    assert stored["d1"].period == "01-01-2024 09:00 – 01-01-2024 11:00"

    status = await _status(db_session, route.id)
    assert status.has_active_disruptions
    assert status.changed_since_last_view
    assert status.last_checked_at is not None


@pytest.mark.asyncio
async def test_second_identical_cycle_is_idempotent(
    route_factory: RouteFactory,
    ns_feed: FakeNsFeed,
    ns_client: NsApiClient,
    db_session: AsyncSession,
) -> None:
    """Re-running with the same feed changes nothing and keeps the viewed flag."""
    route = await route_factory(["GVC", "ASD", "UT"])
    ns_feed.disruptions = [disruption_record("d1", ["ASD"])]
    service = DisruptionSyncService(db_session, ns_client)

    await service.sync_route(route.id, now=CYCLE_TIME)
    first_hash = (await _disruptions(db_session, route.id))["d1"].content_hash
    await RouteService(db_session).mark_route_viewed(route.id)

    result = await service.sync_route(route.id, now=CYCLE_TIME + timedelta(minutes=10))

    assert not result.changed
    assert result.created == result.reactivated == result.content_changed == result.deactivated == 0
    stored = await _disruptions(db_session, route.id)
    assert len(stored) == 1
    assert stored["d1"].is_active
    assert stored["d1"].content_hash == first_hash
    status = await _status(db_session, route.id)
    assert status.has_active_disruptions
    assert not status.changed_since_last_view


@pytest.mark.asyncio
async def test_unviewed_change_survives_unchanged_cycle(
    route_factory: RouteFactory,
    ns_feed: FakeNsFeed,
    ns_client: NsApiClient,
    db_session: AsyncSession,
) -> None:
    """Only the viewer clears the changed flag; a quiet cycle never does."""
    route = await route_factory(["ASD", "UT"])
    ns_feed.disruptions = [disruption_record("d1", ["ASD"])]
    service = DisruptionSyncService(db_session, ns_client)

    await service.sync_route(route.id, now=CYCLE_TIME)
    await service.sync_route(route.id, now=CYCLE_TIME + timedelta(minutes=10))

    assert (await _status(db_session, route.id)).changed_since_last_view


@pytest.mark.asyncio
async def test_disappeared_disruption_is_deactivated_not_deleted(
    route_factory: RouteFactory,
    ns_feed: FakeNsFeed,
    ns_client: NsApiClient,
    db_session: AsyncSession,
) -> None:
    """History is kept; only the active flag flips."""
    route = await route_factory(["ASD", "UT"])
    ns_feed.disruptions = [disruption_record("d1", ["ASD"], title="Signal failure")]
    service = DisruptionSyncService(db_session, ns_client)
    await service.sync_route(route.id, now=CYCLE_TIME)
    await RouteService(db_session).mark_route_viewed(route.id)

    ns_feed.disruptions = []
    result = await service.sync_route(route.id, now=CYCLE_TIME + timedelta(hours=1))

    assert result.deactivated == 1
    assert result.changed
    assert not result.has_active_disruptions
    stored = await _disruptions(db_session, route.id)
    assert not stored["d1"].is_active
    assert stored["d1"].title == "Signal failure"
    status = await _status(db_session, route.id)
    assert not status.has_active_disruptions
    assert status.changed_since_last_view


@pytest.mark.asyncio
async def test_reappearing_disruption_is_reactivated(
    route_factory: RouteFactory,
    ns_feed: FakeNsFeed,
    ns_client: NsApiClient,
    db_session: AsyncSession,
) -> None:
    """A disruption that comes back reuses its row and raises the flag again."""
    route = await route_factory(["ASD", "UT"])
    service = DisruptionSyncService(db_session, ns_client)
    ns_feed.disruptions = [disruption_record("d1", ["UT"])]
    await service.sync_route(route.id, now=CYCLE_TIME)
    ns_feed.disruptions = []
    await service.sync_route(route.id, now=CYCLE_TIME + timedelta(hours=1))
    await RouteService(db_session).mark_route_viewed(route.id)

    ns_feed.disruptions = [disruption_record("d1", ["UT"])]
    result = await service.sync_route(route.id, now=CYCLE_TIME + timedelta(hours=2))

    assert result.reactivated == 1
    stored = await _disruptions(db_session, route.id)
    assert len(stored) == 1
    assert stored["d1"].is_active
    status = await _status(db_session, route.id)
    assert status.has_active_disruptions
    assert status.changed_since_last_view


@pytest.mark.asyncio
async def test_content_change_updates_row_and_flag(
    route_factory: RouteFactory,
    ns_feed: FakeNsFeed,
    ns_client: NsApiClient,
    db_session: AsyncSession,
) -> None:
    """A changed title rewrites the stored fields and new fingerprint."""
    route = await route_factory(["ASD", "UT"])
    service = DisruptionSyncService(db_session, ns_client)
    ns_feed.disruptions = [disruption_record("d1", ["ASD"], title="Delays expected")]
    await service.sync_route(route.id, now=CYCLE_TIME)
    first_hash = (await _disruptions(db_session, route.id))["d1"].content_hash
    await RouteService(db_session).mark_route_viewed(route.id)

    ns_feed.disruptions = [disruption_record("d1", ["ASD"], title="No trains")]
    result = await service.sync_route(route.id, now=CYCLE_TIME + timedelta(minutes=10))

    assert result.content_changed == 1
    stored = (await _disruptions(db_session, route.id))["d1"]
    assert stored.title == "No trains"
    assert stored.content_hash != first_hash
    assert (await _status(db_session, route.id)).changed_since_last_view


@pytest.mark.asyncio
async def test_description_change_alone_is_not_a_change(
    route_factory: RouteFactory,
    ns_feed: FakeNsFeed,
    ns_client: NsApiClient,
    db_session: AsyncSession,
) -> None:
    """Only type, title, period and advice are fingerprinted."""
    route = await route_factory(["ASD", "UT"])
    service = DisruptionSyncService(db_session, ns_client)
    ns_feed.disruptions = [disruption_record("d1", ["ASD"], description="Old text")]
    await service.sync_route(route.id, now=CYCLE_TIME)
    await RouteService(db_session).mark_route_viewed(route.id)

    ns_feed.disruptions = [disruption_record("d1", ["ASD"], description="New text")]
    result = await service.sync_route(route.id, now=CYCLE_TIME + timedelta(minutes=10))

    assert not result.changed
    assert (await _disruptions(db_session, route.id))["d1"].description == "New text"
    assert not (await _status(db_session, route.id)).changed_since_last_view


@pytest.mark.asyncio
async def test_unrelated_disruptions_are_ignored(
    route_factory: RouteFactory,
    ns_feed: FakeNsFeed,
    ns_client: NsApiClient,
    db_session: AsyncSession,
) -> None:
    """Disruptions elsewhere in the network are never stored for the route."""
    route = await route_factory(["ASD", "UT"])
    ns_feed.disruptions = [disruption_record("d1", ["RTD", "GD"]), {"title": "malformed, no id"}]

    result = await DisruptionSyncService(db_session, ns_client).sync_route(route.id, now=CYCLE_TIME)

    assert result.disruptions_found == 0
    assert not result.changed
    assert await _disruptions(db_session, route.id) == {}
    status = await _status(db_session, route.id)
    assert not status.has_active_disruptions
    assert not status.changed_since_last_view
    assert status.last_checked_at is not None


@pytest.mark.asyncio
async def test_routes_are_reconciled_independently(
    route_factory: RouteFactory,
    ns_feed: FakeNsFeed,
    ns_client: NsApiClient,
    db_session: AsyncSession,
) -> None:
    """One disruption affecting two routes gets a row per route."""
    first = await route_factory(["ASD", "UT"])
    second = await route_factory(["UT", "EHV"], name="Utrecht to Eindhoven")
    ns_feed.disruptions = [disruption_record("d1", ["UT"])]
    service = DisruptionSyncService(db_session, ns_client)

    await service.sync_route(first.id, now=CYCLE_TIME)
    await service.sync_route(second.id, now=CYCLE_TIME)
    ns_feed.disruptions = []
    await service.sync_route(first.id, now=CYCLE_TIME + timedelta(hours=1))

    assert not (await _disruptions(db_session, first.id))["d1"].is_active
    assert (await _disruptions(db_session, second.id))["d1"].is_active


@pytest.mark.asyncio
async def test_feed_failure_leaves_state_untouched(
    route_factory: RouteFactory,
    ns_feed: FakeNsFeed,
    ns_client: NsApiClient,
    db_session: AsyncSession,
) -> None:
    """A failed fetch is never mistaken for an empty feed."""
    route = await route_factory(["ASD", "UT"])
    ns_feed.disruptions = [disruption_record("d1", ["ASD"])]
    service = DisruptionSyncService(db_session, ns_client)
    await service.sync_route(route.id, now=CYCLE_TIME)
    checked_at = (await _status(db_session, route.id)).last_checked_at

    ns_feed.status_code = 503
    with pytest.raises(FeedUnavailableError):
        await service.sync_route(route.id, now=CYCLE_TIME + timedelta(hours=1))

    assert (await _disruptions(db_session, route.id))["d1"].is_active
    status = await _status(db_session, route.id)
    assert status.has_active_disruptions
    assert status.last_checked_at == checked_at


@pytest.mark.asyncio
async def test_missing_route_raises(ns_feed: FakeNsFeed, ns_client: NsApiClient, db_session: AsyncSession) -> None:
    """A deleted route is reported without touching the feed."""
    with pytest.raises(RouteNotFoundError):
        await DisruptionSyncService(db_session, ns_client).sync_route(uuid.uuid4())

    assert ns_feed.requests == []


@pytest.mark.asyncio
async def test_mark_old_disruptions_inactive_without_active_ids(
    route_factory: RouteFactory,
    ns_feed: FakeNsFeed,
    ns_client: NsApiClient,
    db_session: AsyncSession,
) -> None:
    """An empty active set deactivates every active row of the route."""
    route = await route_factory(["ASD", "UT"])
    ns_feed.disruptions = [disruption_record("d1", ["ASD"]), disruption_record("d2", ["UT"])]
    service = DisruptionSyncService(db_session, ns_client)
    await service.sync_route(route.id, now=CYCLE_TIME)

    deactivated = await service.mark_old_disruptions_inactive(route.id, set(), CYCLE_TIME)

    assert deactivated == 2
    assert not any(row.is_active for row in (await _disruptions(db_session, route.id)).values())


def _string_expected_duration(record: dict[str, Any]) -> None:
    record["expectedDuration"] = "Expected until 12:00"


def _null_section_station(record: dict[str, Any]) -> None:
    record["publicationSections"][0]["section"]["stations"].append(None)


def _non_object_section(record: dict[str, Any]) -> None:
    record["publicationSections"].append("ASD")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "corrupt",
    [_string_expected_duration, _null_section_station, _non_object_section],
    ids=["string-expected-duration", "null-station", "non-object-section"],
)
async def test_bad_nested_field_keeps_disruption_active(
    corrupt: Callable[[dict[str, Any]], None],
    route_factory: RouteFactory,
    ns_feed: FakeNsFeed,
    ns_client: NsApiClient,
    db_session: AsyncSession,
) -> None:
    """A disruption still in the feed stays active when one nested value is unusable."""
    route = await route_factory(["ASD", "UT"])
    service = DisruptionSyncService(db_session, ns_client)
    ns_feed.disruptions = [disruption_record("d1", ["ASD"])]
    await service.sync_route(route.id, now=CYCLE_TIME)

    record = disruption_record("d1", ["ASD"])
    corrupt(record)
    ns_feed.disruptions = [record]
    result = await service.sync_route(route.id, now=CYCLE_TIME + timedelta(minutes=10))

    assert result.disruptions_found == 1
    assert result.deactivated == 0
    assert not result.changed
    assert result.has_active_disruptions
    assert (await _disruptions(db_session, route.id))["d1"].is_active


# ==================== Overlapping cycles ====================


@pytest.mark.asyncio
async def test_overlapping_cycles_converge_on_one_row_per_disruption(
    route_factory: RouteFactory,
    ns_feed: FakeNsFeed,
    ns_client: NsApiClient,
    db_engine: AsyncEngine,
    db_session: AsyncSession,
) -> None:
    """Two cycles planned from the same stored state write each disruption once."""
    route = await route_factory(["ASD", "UT"])
    ns_feed.disruptions = [disruption_record("d1", ["ASD"])]
    await DisruptionSyncService(db_session, ns_client).sync_route(route.id, now=CYCLE_TIME)
    await RouteService(db_session).mark_route_viewed(route.id)

    ns_feed.disruptions = [disruption_record("d2", ["UT"])]
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as first_session, session_factory() as second_session:
        first = DisruptionSyncService(first_session, ns_client)
        second = DisruptionSyncService(second_session, ns_client)
        snapshot = await first.load_stored_states(route.id)
        await first_session.commit()

        with patch.object(first, "load_stored_states", AsyncMock(return_value=snapshot)):
            first_result = await first.sync_route(route.id, now=CYCLE_TIME + timedelta(minutes=10))
        with patch.object(second, "load_stored_states", AsyncMock(return_value=snapshot)):
            second_result = await second.sync_route(route.id, now=CYCLE_TIME + timedelta(minutes=10))

    assert first_result.created == second_result.created == 1
    assert first_result.deactivated == 1
    assert second_result.deactivated == 0
    assert second_result.changed

    stored = await _disruptions(db_session, route.id)
    assert set(stored) == {"d1", "d2"}
    assert not stored["d1"].is_active
    assert stored["d2"].is_active
    status = await _status(db_session, route.id)
    assert status.changed_since_last_view
    assert status.has_active_disruptions


@pytest.mark.asyncio
async def test_late_cycle_deactivating_unseen_rows_raises_badge(
    route_factory: RouteFactory,
    ns_feed: FakeNsFeed,
    ns_client: NsApiClient,
    db_engine: AsyncEngine,
    db_session: AsyncSession,
) -> None:
    """A cycle whose plan saw no change still reports the rows it deactivated."""
    route = await route_factory(["ASD", "UT"])
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as first_session, session_factory() as second_session:
        first = DisruptionSyncService(first_session, ns_client)
        second = DisruptionSyncService(second_session, ns_client)
        snapshot = await first.load_stored_states(route.id)
        await first_session.commit()

        # The earlier cycle sees d1; the later one reads a newer feed without it
        ns_feed.disruptions = [disruption_record("d1", ["ASD"])]
        with patch.object(first, "load_stored_states", AsyncMock(return_value=snapshot)):
            await first.sync_route(route.id, now=CYCLE_TIME)
        await RouteService(first_session).mark_route_viewed(route.id)

        ns_feed.disruptions = []
        with patch.object(second, "load_stored_states", AsyncMock(return_value=snapshot)):
            result = await second.sync_route(route.id, now=CYCLE_TIME + timedelta(minutes=1))

    assert result.disruptions_found == 0
    assert result.created == result.reactivated == result.content_changed == 0
    assert result.deactivated == 1
    assert result.changed
    assert not result.has_active_disruptions

    stored = await _disruptions(db_session, route.id)
    assert list(stored) == ["d1"]
    assert not stored["d1"].is_active
    assert (await _status(db_session, route.id)).changed_since_last_view
