"""Pydantic schemas for route management."""

import re
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from railwatch.models.route import UrgencyLevel
from railwatch.schemas.trips import StationRef

_DEPARTURE_TIME_PATTERN = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")

# ==================== Helper Functions ====================


def _validate_schedule_days(days: list[int]) -> list[int]:
    """
    Validate weekday indices - reusable helper.

    Args:
        days: Weekday indices, 0 = Sunday through 6 = Saturday

    Returns:
        Validated days

    Raises:
        ValueError: If any day is out of range or duplicated
    """
    if invalid_days := sorted({day for day in days if not 0 <= day <= 6}):  # noqa: PLR2004
        msg = f"Invalid schedule days: {invalid_days}. Valid days are 0 (Sunday) to 6 (Saturday)"
        raise ValueError(msg)

    if len(days) != len(set(days)):
        msg = "Duplicate schedule days are not allowed"
        raise ValueError(msg)

    return days


def _validate_departure_time(value: str) -> str:
    """
    Validate a local departure time - reusable helper.

    Args:
        value: Time as zero-padded ``HH:MM`` between 00:00 and 23:59

    Returns:
        Validated time

    Raises:
        ValueError: If the value is not a valid ``HH:MM`` time
    """
    if not _DEPARTURE_TIME_PATTERN.match(value):
        msg = f"departure_time must be HH:MM between 00:00 and 23:59. Got {value!r}"
        raise ValueError(msg)
    return value


def _validate_route_name(value: str) -> str:
    if not value.strip():
        msg = "Route name must not be blank"
        raise ValueError(msg)
    return value.strip()


# ==================== Request Schemas ====================


class CreateRouteRequest(BaseModel):
    """Request to create a monitored route."""

    name: str = Field(..., min_length=1, max_length=255, description="Route name")
    origin_code: str = Field(..., min_length=1, max_length=20)
    origin_name: str = Field(..., min_length=1, max_length=255)
    destination_code: str = Field(..., min_length=1, max_length=20)
    destination_name: str = Field(..., min_length=1, max_length=255)
    schedule_days: list[int] = Field(
        default_factory=list,
        description="Weekday indices the route runs on, 0 = Sunday",
    )
    departure_time: str = Field(..., description="Local departure time as HH:MM")
    urgency_level: UrgencyLevel = UrgencyLevel.NORMAL
    stations: list[StationRef] | None = Field(
        None,
        description="Ordered stations from a chosen route option; origin and destination are used when omitted",
    )

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Reject blank names."""
        return _validate_route_name(v)

    @field_validator("schedule_days")
    @classmethod
    def validate_schedule_days(cls, v: list[int]) -> list[int]:
        """Validate schedule days using shared helper."""
        return _validate_schedule_days(v)

    @field_validator("departure_time")
    @classmethod
    def validate_departure_time(cls, v: str) -> str:
        """Validate departure time using shared helper."""
        return _validate_departure_time(v)


class UpdateRouteRequest(BaseModel):
    """Request to update route metadata. Stations cannot be changed."""

    name: str | None = Field(None, min_length=1, max_length=255)
    schedule_days: list[int] | None = None
    departure_time: str | None = None
    urgency_level: UrgencyLevel | None = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str | None) -> str | None:
        """Reject blank names."""
        return None if v is None else _validate_route_name(v)

    @field_validator("schedule_days")
    @classmethod
    def validate_schedule_days(cls, v: list[int] | None) -> list[int] | None:
        """Validate schedule days using shared helper."""
        return None if v is None else _validate_schedule_days(v)

    @field_validator("departure_time")
    @classmethod
    def validate_departure_time(cls, v: str | None) -> str | None:
        """Validate departure time using shared helper."""
        return None if v is None else _validate_departure_time(v)


# ==================== Response Schemas ====================


class RouteStationResponse(BaseModel):
    """Station on a route."""

    model_config = ConfigDict(from_attributes=True)

    station_code: str
    station_name: str
    position: int  # 0 = origin


class RouteStatusResponse(BaseModel):
    """Badge status of a route."""

    model_config = ConfigDict(from_attributes=True)

    last_checked_at: datetime | None = None
    has_active_disruptions: bool = False
    changed_since_last_view: bool = False


class RouteResponse(BaseModel):
    """Route with its ordered stations."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    origin_code: str
    origin_name: str
    destination_code: str
    destination_name: str
    schedule_days: list[int]
    departure_time: str
    urgency_level: UrgencyLevel
    stations: list[RouteStationResponse]
    created_at: datetime
    updated_at: datetime


class RouteWithStatusResponse(RouteResponse):
    """Route as listed on the overview, with badge status."""

    status: RouteStatusResponse
    active_disruption_count: int = 0


class DisruptionResponse(BaseModel):
    """Stored disruption for a route."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    external_disruption_id: str
    type: str  # MAINTENANCE, DISRUPTION or CALAMITY
    title: str
    description: str
    period: str
    advice: str | None = None
    affected_stations: list[str]
    last_seen: datetime
    is_active: bool


class RouteStatsResponse(BaseModel):
    """Counts for the overview header."""

    total_routes: int
    active_disruptions: int
    routes_with_disruptions: int


class RouteCheckResponse(BaseModel):
    """Outcome of a manual disruption check."""

    route_id: UUID
    disruptions_found: int
    created: int
    reactivated: int
    content_changed: int
    deactivated: int
    changed: bool
    has_active_disruptions: bool
