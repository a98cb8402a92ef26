"""Pydantic schemas for the station directory."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class StationResponse(BaseModel):
    """Response schema for a cached NS station."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    code: str  # e.g. "UT"
    uic_code: str  # e.g. "8400621"
    name_long: str
    name_medium: str
    name_short: str
    synonyms: list[str]
    latitude: float | None = None
    longitude: float | None = None
    country: str
    last_updated: datetime


class StationCountResponse(BaseModel):
    """Number of stations in the directory."""

    count: int


class StationSyncResponse(BaseModel):
    """Outcome of a bulk station sync."""

    synced: int
    total: int
