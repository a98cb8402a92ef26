"""RailWatch - rail disruption monitoring for commute routes."""

__version__ = "0.1.0"
