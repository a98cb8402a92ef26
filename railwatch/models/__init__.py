"""Database models for RailWatch."""

# Import all models to register them with SQLAlchemy metadata
from railwatch.models.base import Base, BaseModel
from railwatch.models.disruption import Disruption, DisruptionType
from railwatch.models.route import Route, RouteStation, RouteStatus, UrgencyLevel
from railwatch.models.station import Station

__all__ = [
    # Base
    "Base",
    "BaseModel",
    # Station directory
    "Station",
    # Route models
    "Route",
    "RouteStation",
    "RouteStatus",
    "UrgencyLevel",
    # Disruption models
    "Disruption",
    "DisruptionType",
]
