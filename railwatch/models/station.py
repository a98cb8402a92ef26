"""Cached NS station directory."""

from datetime import datetime

from sqlalchemy import JSON, DateTime, Float, String
from sqlalchemy.orm import Mapped, mapped_column

from railwatch.models.base import BaseModel


class Station(BaseModel):
    """Station from the NS station feed, refreshed by the bulk sync."""

    __tablename__ = "stations"

    code: Mapped[str] = mapped_column(
        String(20),
        unique=True,
        nullable=False,
        index=True,
        comment="Short station code, e.g. 'ASD'",
    )
    uic_code: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        index=True,  # Trip results identify stations by UIC code
        default="",
    )
    name_long: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    name_medium: Mapped[str] = mapped_column(String(255), nullable=False)
    name_short: Mapped[str] = mapped_column(String(100), nullable=False)
    # Alternative spellings e.g. ["Amsterdam", "A'dam"]
    synonyms: Mapped[list[str]] = mapped_column(
        JSON,
        nullable=False,
        default=lambda: [],
    )
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    country: Mapped[str] = mapped_column(String(5), nullable=False, default="NL")
    last_updated: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        """String representation of the station."""
        return f"<Station(id={self.id}, code={self.code}, name={self.name_long})>"
