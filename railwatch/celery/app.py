"""Celery application instance and configuration."""

import structlog
from celery import Celery
from celery.signals import worker_ready

from railwatch.core.config import require_config, settings
from railwatch.core.logging import configure_logging

logger = structlog.get_logger(__name__)

# Workers log through the same structlog pipeline as the API
configure_logging(log_level=settings.LOG_LEVEL)

require_config("CELERY_BROKER_URL", "CELERY_RESULT_BACKEND")

# Follow-up checks are queued at most one day ahead of their departure
BROKER_VISIBILITY_TIMEOUT = 24 * 3600

celery_app = Celery("railwatch")

celery_app.conf.update(
    broker_url=settings.CELERY_BROKER_URL,
    result_backend=settings.CELERY_RESULT_BACKEND,
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    # Timezone
    timezone="UTC",
    enable_utc=True,
    # Task tracking
    task_track_started=True,
    # Task time limits (5 min hard, 4 min soft)
    task_time_limit=300,
    task_soft_time_limit=240,
    # Don't hijack root logger - let structlog handle it
    worker_hijack_root_logger=False,
    # Follow-up checks are queued hours ahead with a countdown; Redis must not
    # redeliver them before they are due
    broker_transport_options={"visibility_timeout": BROKER_VISIBILITY_TIMEOUT},
)

# Spans per task; the TracerProvider is installed after fork in railwatch.celery.database
if settings.OTEL_ENABLED:
    from opentelemetry.instrumentation.celery import CeleryInstrumentor

    CeleryInstrumentor().instrument()
    logger.info("celery_otel_instrumentation_enabled")


@worker_ready.connect
def trigger_startup_tasks(
    **kwargs: object,
) -> None:
    """
    Populate the station directory as soon as a worker starts.

    A fresh deployment would otherwise wait for the monthly sync before trip
    options could resolve UIC codes. The sync upserts on station code, so
    running it against a populated directory only refreshes it.
    """
    try:
        celery_app.send_task("railwatch.celery.tasks.sync_all_stations")
        logger.info("worker_startup_station_sync_triggered")
    except Exception:
        logger.exception("worker_startup_tasks_failed")


# Registers tasks and populates celery_app.conf.beat_schedule; must come after celery_app exists
from railwatch.celery import (  # noqa: E402
    schedules,  # noqa: F401
    tasks,  # noqa: F401
)
