"""Disruptions recorded per monitored route."""

import uuid
from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from railwatch.models.base import BaseModel

if TYPE_CHECKING:
    from railwatch.models.route import Route


class DisruptionType(StrEnum):
    """Disruption categories published by the NS feed."""

    MAINTENANCE = "MAINTENANCE"
    DISRUPTION = "DISRUPTION"
    CALAMITY = "CALAMITY"


class Disruption(BaseModel):
    """An upstream disruption as it affects one route.

    Rows are never deleted by the sync; ``is_active`` flips instead so the last
    known content stays available as history.
    """

    __tablename__ = "disruptions"

    route_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("routes.id", ondelete="CASCADE"),
        nullable=False,
    )
    external_disruption_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        comment="Disruption id from the NS feed",
    )
    type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=DisruptionType.DISRUPTION.value,
    )
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    period: Mapped[str] = mapped_column(String(255), nullable=False)
    advice: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Route station codes named by the disruption, e.g. ["ASD", "UT"]
    affected_stations: Mapped[list[str]] = mapped_column(
        JSON,
        nullable=False,
        default=lambda: [],
    )
    last_seen: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    content_hash: Mapped[str] = mapped_column(String(16), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    route: Mapped["Route"] = relationship(back_populates="disruptions")

    __table_args__ = (
        UniqueConstraint("route_id", "external_disruption_id", name="uq_disruption_route_external"),
        Index("ix_disruptions_route_active", "route_id", "is_active"),
    )

    def __repr__(self) -> str:
        """String representation of the disruption."""
        return (
            f"<Disruption(id={self.id}, route={self.route_id}, "
            f"external_id={self.external_disruption_id}, active={self.is_active})>"
        )
