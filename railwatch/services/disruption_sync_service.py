"""Disruption sync cycle: fetch, match, reconcile and update route status.

One cycle handles one route. Steps run strictly in order and every write is an
idempotent upsert keyed by (route_id, external_disruption_id), so a cycle that
fails part way is retried by simply running it again.
"""

import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from railwatch.core.database import upsert_insert
from railwatch.core.telemetry import service_span
from railwatch.core.utils import utc_now
from railwatch.helpers.disruption_helpers import (
    MatchedDisruption,
    content_fingerprint,
    extract_period,
    match_disruptions_to_route,
)
from railwatch.models.disruption import Disruption
from railwatch.services.ns_client import NsApiClient
from railwatch.services.route_service import RouteNotFoundError, RouteService
from railwatch.services.route_status_service import RouteStatusService

logger = structlog.get_logger(__name__)


# ==================== Reconciliation Planning ====================


@dataclass(frozen=True)
class StoredDisruptionState:
    """What reconciliation needs to know about an already stored disruption."""

    is_active: bool
    content_hash: str


@dataclass(frozen=True)
class DisruptionUpsert:
    """Display fields written for one matched disruption."""

    external_disruption_id: str
    type: str
    title: str
    description: str
    period: str
    advice: str | None
    affected_stations: list[str]
    content_hash: str


@dataclass(frozen=True)
class ReconciliationPlan:
    """Writes and change classification for one route's sync cycle."""

    upserts: list[DisruptionUpsert]
    active_ids: set[str]
    created_ids: list[str] = field(default_factory=list)
    reactivated_ids: list[str] = field(default_factory=list)
    content_changed_ids: list[str] = field(default_factory=list)
    deactivated_ids: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        """Whether the badge should be raised after applying this plan."""
        return bool(self.created_ids or self.reactivated_ids or self.content_changed_ids or self.deactivated_ids)


@dataclass(frozen=True)
class SyncResult:
    """Summary of one sync cycle."""

    route_id: uuid.UUID
    disruptions_found: int
    created: int
    reactivated: int
    content_changed: int
    deactivated: int
    changed: bool
    has_active_disruptions: bool


def build_disruption_upsert(matched: MatchedDisruption) -> DisruptionUpsert:
    """
    Derive the stored fields of a matched disruption.

    Args:
        matched: Disruption and the route stations it affects

    Returns:
        Values for the upsert, including the content fingerprint
    """
    disruption = matched.disruption
    period = extract_period(disruption)
    return DisruptionUpsert(
        external_disruption_id=disruption.id,
        type=disruption.type,
        title=disruption.title,
        description=disruption.description,
        period=period,
        advice=disruption.advice or None,
        affected_stations=list(matched.affected_stations),
        content_hash=content_fingerprint(disruption.type, disruption.title, period, disruption.advice),
    )


def plan_reconciliation(
    stored_states: Mapping[str, StoredDisruptionState],
    matched: Mapping[str, MatchedDisruption],
) -> ReconciliationPlan:
    """
    Compare matched feed disruptions against stored state for one route.

    Pure function for easy testing without database dependencies.

    A matched id is *created* when nothing is stored for it, *reactivated*
    when it is stored inactive, and *content changed* when it is stored active
    with a different fingerprint. A stored active id that was not matched is
    *deactivated*.

    Args:
        stored_states: Stored disruptions of the route by external id
        matched: Matcher output for the route by external id

    Returns:
        ReconciliationPlan with the upserts and change classification

    Example:
        >>> plan = plan_reconciliation({"d0": StoredDisruptionState(True, "abc")}, {})
        >>> plan.deactivated_ids, plan.changed
        (['d0'], True)
    """
    upserts = [build_disruption_upsert(item) for item in matched.values()]
    active_ids = {upsert.external_disruption_id for upsert in upserts}

    created_ids: list[str] = []
    reactivated_ids: list[str] = []
    content_changed_ids: list[str] = []
    for upsert in upserts:
        stored = stored_states.get(upsert.external_disruption_id)
        if stored is None:
            created_ids.append(upsert.external_disruption_id)
        elif not stored.is_active:
            reactivated_ids.append(upsert.external_disruption_id)
        elif stored.content_hash != upsert.content_hash:
            content_changed_ids.append(upsert.external_disruption_id)

    deactivated_ids = [
        external_id for external_id, stored in stored_states.items() if stored.is_active and external_id not in active_ids
    ]

    return ReconciliationPlan(
        upserts=upserts,
        active_ids=active_ids,
        created_ids=created_ids,
        reactivated_ids=reactivated_ids,
        content_changed_ids=content_changed_ids,
        deactivated_ids=deactivated_ids,
    )


# ==================== Sync Service ====================


class DisruptionSyncService:
    """Runs disruption sync cycles for monitored routes."""

    def __init__(self, db: AsyncSession, ns_client: NsApiClient) -> None:
        """
        Initialize the sync service.

        Args:
            db: Database session
            ns_client: Client for the NS disruption feed
        """
        self.db = db
        self.ns_client = ns_client
        self.route_service = RouteService(db)
        self.route_status_service = RouteStatusService(db)

    async def sync_route(
        self,
        route_id: uuid.UUID,
        use_cache: bool = False,
        now: datetime | None = None,
    ) -> SyncResult:
        """
        Run one fetch, match, reconcile and status cycle for a route.

        The feed is read before anything is written, so a feed failure leaves
        the stored state of the route untouched.

        Args:
            route_id: Route UUID
            use_cache: Share a recent feed snapshot with other route checks
            now: Cycle timestamp (defaults to the current UTC time)

        Returns:
            SyncResult summarizing what changed

        Raises:
            RouteNotFoundError: If the route does not exist
            ConfigurationError: If NS_API_KEY is not configured
            FeedUnavailableError: If the disruption feed cannot be read
        """
        with service_span("disruption_sync.sync_route", "railwatch", route_id=str(route_id)) as span:
            route = await self.route_service.get_route_internal(route_id)
            if route is None:
                logger.warning("sync_route_not_found", route_id=str(route_id))
                raise RouteNotFoundError(route_id)

            station_codes = route.station_codes
            disruptions = await self.ns_client.fetch_disruptions(use_cache=use_cache)
            matched = match_disruptions_to_route(disruptions, station_codes)

            stored_states = await self.load_stored_states(route_id)
            plan = plan_reconciliation(stored_states, matched)

            cycle_time = now or utc_now()
            for upsert in plan.upserts:
                await self.upsert_disruption(route_id, upsert, cycle_time)
            deactivated = await self.mark_old_disruptions_inactive(route_id, plan.active_ids, cycle_time)

            # A concurrent cycle may have deactivated rows the plan did not see
            changed = plan.changed or deactivated > 0
            status = await self.route_status_service.update_route_status(route_id, changed, cycle_time)

            span.set_attribute("sync.disruptions_found", len(matched))
            span.set_attribute("sync.changed", changed)

        result = SyncResult(
            route_id=route_id,
            disruptions_found=len(matched),
            created=len(plan.created_ids),
            reactivated=len(plan.reactivated_ids),
            content_changed=len(plan.content_changed_ids),
            deactivated=deactivated,
            changed=changed,
            has_active_disruptions=status.has_active_disruptions,
        )
        logger.info(
            "route_sync_completed",
            route_id=str(route_id),
            stations=station_codes,
            feed_count=len(disruptions),
            disruptions_found=result.disruptions_found,
            created=result.created,
            reactivated=result.reactivated,
            content_changed=result.content_changed,
            deactivated=result.deactivated,
            changed=result.changed,
        )
        return result

    async def load_stored_states(self, route_id: uuid.UUID) -> dict[str, StoredDisruptionState]:
        """Active flag and fingerprint of every stored disruption for a route."""
        result = await self.db.execute(
            select(
                Disruption.external_disruption_id,
                Disruption.is_active,
                Disruption.content_hash,
            ).where(Disruption.route_id == route_id)
        )
        return {
            external_id: StoredDisruptionState(is_active=is_active, content_hash=content_hash)
            for external_id, is_active, content_hash in result.all()
        }

    async def upsert_disruption(self, route_id: uuid.UUID, upsert: DisruptionUpsert, now: datetime) -> None:
        """
        Insert or refresh one disruption of a route and mark it active.

        Args:
            route_id: Route UUID
            upsert: Display fields and fingerprint from the feed
            now: Recorded as last_seen
        """
        values = {
            "type": upsert.type,
            "title": upsert.title,
            "description": upsert.description,
            "period": upsert.period,
            "advice": upsert.advice,
            "affected_stations": list(upsert.affected_stations),
            "content_hash": upsert.content_hash,
            "last_seen": now,
            "is_active": True,
        }
        stmt = upsert_insert(self.db, Disruption).values(
            id=uuid.uuid4(),
            route_id=route_id,
            external_disruption_id=upsert.external_disruption_id,
            **values,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[Disruption.route_id, Disruption.external_disruption_id],
            set_={**values, "updated_at": now},
        )
        await self.db.execute(stmt)
        await self.db.commit()

    async def mark_old_disruptions_inactive(
        self,
        route_id: uuid.UUID,
        active_ids: set[str],
        now: datetime,
    ) -> int:
        """
        Deactivate stored disruptions of a route that the feed no longer lists.

        Only ``is_active`` changes; the last known content is kept as history.

        Args:
            route_id: Route UUID
            active_ids: External ids upserted in this cycle
            now: Recorded as updated_at

        Returns:
            Number of disruptions deactivated
        """
        stmt = update(Disruption).where(
            Disruption.route_id == route_id,
            Disruption.is_active.is_(True),
        )
        if active_ids:
            stmt = stmt.where(Disruption.external_disruption_id.not_in(sorted(active_ids)))

        result = await self.db.execute(
            stmt.values(is_active=False, updated_at=now).execution_options(synchronize_session=False)
        )
        await self.db.commit()

        deactivated = result.rowcount or 0
        if deactivated:
            logger.info("disruptions_deactivated", route_id=str(route_id), count=deactivated)
        return deactivated
