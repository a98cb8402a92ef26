"""Core infrastructure: configuration, logging, database and telemetry."""
