"""Per-route badge status maintenance."""

import uuid
from datetime import datetime

import structlog
from sqlalchemy import exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from railwatch.core.database import upsert_insert
from railwatch.models.disruption import Disruption
from railwatch.models.route import RouteStatus

logger = structlog.get_logger(__name__)


class RouteStatusService:
    """Keeps the single RouteStatus row of each route up to date."""

    def __init__(self, db: AsyncSession) -> None:
        """
        Initialize the route status service.

        Args:
            db: Database session
        """
        self.db = db

    async def has_active_disruptions(self, route_id: uuid.UUID) -> bool:
        """Whether any stored disruption for the route is active."""
        result = await self.db.execute(
            select(exists().where(Disruption.route_id == route_id, Disruption.is_active.is_(True)))
        )
        return bool(result.scalar())

    async def update_route_status(self, route_id: uuid.UUID, changed: bool, now: datetime) -> RouteStatus:
        """
        Recompute and upsert the status row after a sync cycle.

        ``has_active_disruptions`` is always derived from the stored rows.
        ``changed_since_last_view`` is set when ``changed`` is true and otherwise
        left as stored; a new row starts with it cleared unless ``changed``.

        Args:
            route_id: Route UUID
            changed: Whether the cycle created, flipped or altered a disruption
            now: Check time recorded as last_checked_at

        Returns:
            The refreshed status row
        """
        has_active = await self.has_active_disruptions(route_id)

        update_values: dict[str, object] = {
            "last_checked_at": now,
            "has_active_disruptions": has_active,
            "updated_at": now,
        }
        if changed:
            update_values["changed_since_last_view"] = True

        stmt = upsert_insert(self.db, RouteStatus).values(
            id=uuid.uuid4(),
            route_id=route_id,
            last_checked_at=now,
            has_active_disruptions=has_active,
            changed_since_last_view=changed,
        )
        stmt = stmt.on_conflict_do_update(index_elements=[RouteStatus.route_id], set_=update_values)
        await self.db.execute(stmt)
        await self.db.commit()

        result = await self.db.execute(
            select(RouteStatus)
            .where(RouteStatus.route_id == route_id)
            .execution_options(populate_existing=True)
        )
        status = result.scalar_one()

        logger.info(
            "route_status_updated",
            route_id=str(route_id),
            has_active_disruptions=status.has_active_disruptions,
            changed_since_last_view=status.changed_since_last_view,
        )
        return status
