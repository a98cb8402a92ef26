"""Monitored commute routes and their badge status."""

import uuid
from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from railwatch.models.base import BaseModel

if TYPE_CHECKING:
    from railwatch.models.disruption import Disruption


class UrgencyLevel(StrEnum):
    """How aggressively a route is re-checked before departure."""

    NORMAL = "normal"
    IMPORTANT = "important"


class Route(BaseModel):
    """User-defined route to monitor for disruptions."""

    __tablename__ = "routes"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    origin_code: Mapped[str] = mapped_column(String(20), nullable=False)
    origin_name: Mapped[str] = mapped_column(String(255), nullable=False)
    destination_code: Mapped[str] = mapped_column(String(20), nullable=False)
    destination_name: Mapped[str] = mapped_column(String(255), nullable=False)
    # Weekday indices, 0 = Sunday through 6 = Saturday
    schedule_days: Mapped[list[int]] = mapped_column(
        JSON,
        nullable=False,
        default=lambda: [],
    )
    departure_time: Mapped[str] = mapped_column(
        String(5),
        nullable=False,
        comment="Local departure time as HH:MM",
    )
    urgency_level: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=UrgencyLevel.NORMAL.value,
    )

    # Relationships
    stations: Mapped[list["RouteStation"]] = relationship(
        back_populates="route",
        cascade="all, delete-orphan",
        order_by="RouteStation.position",
    )
    status: Mapped["RouteStatus | None"] = relationship(
        back_populates="route",
        cascade="all, delete-orphan",
        uselist=False,
    )
    disruptions: Mapped[list["Disruption"]] = relationship(
        back_populates="route",
        cascade="all, delete-orphan",
    )

    @property
    def station_codes(self) -> list[str]:
        """Station codes in travel order."""
        return [station.station_code for station in self.stations]

    def __repr__(self) -> str:
        """String representation of the route."""
        return f"<Route(id={self.id}, name={self.name})>"


class RouteStation(BaseModel):
    """A station on a route; position 0 is the origin."""

    __tablename__ = "route_stations"

    route_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("routes.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    station_code: Mapped[str] = mapped_column(String(20), nullable=False)
    station_name: Mapped[str] = mapped_column(String(255), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)

    route: Mapped[Route] = relationship(back_populates="stations")

    __table_args__ = (UniqueConstraint("route_id", "position", name="uq_route_station_position"),)

    def __repr__(self) -> str:
        """String representation of the route station."""
        return f"<RouteStation(route={self.route_id}, code={self.station_code}, position={self.position})>"


class RouteStatus(BaseModel):
    """Aggregate badge status, one row per route, always updated in place."""

    __tablename__ = "route_statuses"

    route_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("routes.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    last_checked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        default=None,
    )
    has_active_disruptions: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    changed_since_last_view: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    route: Mapped[Route] = relationship(back_populates="status")

    def __repr__(self) -> str:
        """String representation of the route status."""
        return (
            f"<RouteStatus(route={self.route_id}, active={self.has_active_disruptions}, "
            f"changed={self.changed_since_last_view})>"
        )
