"""Pydantic schemas for trip search results."""

from pydantic import BaseModel, Field


class StationRef(BaseModel):
    """Station identified by its short code, with a display name."""

    code: str  # e.g. "ASD"
    name: str  # e.g. "Amsterdam Centraal"


class RouteOption(BaseModel):
    """One distinct, display-ready journey between two stations."""

    uid: str
    duration_in_minutes: int = Field(ge=0)
    transfers: int = Field(ge=0)
    stations: list[StationRef]  # Origin first, destination last
    via_stations: str  # e.g. "Amsterdam Sloterdijk, Haarlem" or "Direct"
