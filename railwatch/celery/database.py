"""Database and cache resources for Celery workers.

Workers need their own database engine separate from the FastAPI application
so that connections are never shared across processes.

Each worker process owns one persistent event loop, created after fork and
kept for the lifetime of the process. Every task runs in that loop, so the
engine's connection pool and the Redis feed snapshot cache are bound to it and
reused across tasks.
"""

import asyncio
import contextlib
import threading

import structlog
from aiocache.base import BaseCache
from celery.signals import worker_process_init, worker_process_shutdown
from opentelemetry import trace
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from railwatch.core.config import settings

# Created once per worker process and reused across tasks
_worker_loop: asyncio.AbstractEventLoop | None = None
_worker_engine: AsyncEngine | None = None
_worker_session_factory: async_sessionmaker[AsyncSession] | None = None
_worker_feed_cache: BaseCache | None = None

_worker_sqlalchemy_instrumented: bool = False

# RLock: engine creation happens while the session factory lock is held
_init_lock = threading.RLock()

logger = structlog.get_logger(__name__)


@worker_process_init.connect
def init_worker_resources(
    **kwargs: object,
) -> None:
    """
    Create the persistent event loop after the worker process forks.

    Engine and cache are created lazily on first use, bound to this loop.
    """
    global _worker_loop  # noqa: PLW0603

    if _worker_loop is not None and not _worker_loop.is_closed():
        logger.debug("worker_process_init_loop_already_exists")
        return

    logger.info("worker_process_init_creating_persistent_loop")

    _worker_loop = asyncio.new_event_loop()
    asyncio.set_event_loop(_worker_loop)

    if settings.OTEL_ENABLED:
        from railwatch.core.telemetry import (  # noqa: PLC0415  # Lazy import for fork-safety
            get_tracer_provider,
            set_logger_provider,
        )

        if provider := get_tracer_provider():
            trace.set_tracer_provider(provider)
            logger.info("worker_otel_tracer_provider_initialized")

        set_logger_provider()
        logger.info("worker_otel_logger_provider_initialized")

    logger.info("worker_process_init_completed")


@worker_process_shutdown.connect
def cleanup_worker_resources(
    **kwargs: object,
) -> None:
    """Dispose the engine, close the cache and close the event loop."""
    global _worker_loop, _worker_engine, _worker_session_factory, _worker_feed_cache, _worker_sqlalchemy_instrumented  # noqa: PLW0603
    logger.info("worker_process_shutdown_cleaning_up")

    if _worker_loop is not None:
        # Clear globals first so nothing new is created during disposal
        loop = _worker_loop
        engine = _worker_engine
        feed_cache = _worker_feed_cache

        _worker_loop = None
        _worker_engine = None
        _worker_session_factory = None
        _worker_feed_cache = None
        _worker_sqlalchemy_instrumented = False

        try:
            if engine is not None:
                logger.debug("disposing_worker_engine")
                loop.run_until_complete(engine.dispose())

            if feed_cache is not None:
                logger.debug("closing_worker_feed_cache")
                loop.run_until_complete(feed_cache.close())

            if settings.OTEL_ENABLED:
                from railwatch.core.telemetry import shutdown_tracer_provider  # noqa: PLC0415

                shutdown_tracer_provider()
                logger.debug("worker_otel_tracer_provider_shutdown")

        except Exception as exc:
            # Shutting down; log and carry on closing the loop
            logger.warning(
                "worker_shutdown_cleanup_error",
                error=str(exc),
                error_type=type(exc).__name__,
            )
        finally:
            pending = asyncio.all_tasks(loop)
            if pending:
                logger.debug("cancelling_pending_tasks", count=len(pending))
                for task in pending:
                    task.cancel()
                with contextlib.suppress(Exception):
                    loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))

            logger.debug("closing_worker_event_loop")
            loop.close()
            asyncio.set_event_loop(None)

    logger.info("worker_process_shutdown_completed")


def _get_worker_engine() -> AsyncEngine:
    """Get or create the worker database engine, instrumented when OTEL is on."""
    global _worker_engine, _worker_sqlalchemy_instrumented  # noqa: PLW0603
    if _worker_engine is None or (settings.OTEL_ENABLED and not _worker_sqlalchemy_instrumented):
        with _init_lock:
            if _worker_engine is None:
                _worker_engine = create_async_engine(
                    settings.DATABASE_URL,
                    echo=settings.DATABASE_ECHO,
                    pool_size=settings.DATABASE_POOL_SIZE,
                    max_overflow=settings.DATABASE_MAX_OVERFLOW,
                )
            if settings.OTEL_ENABLED and not _worker_sqlalchemy_instrumented:
                from opentelemetry.instrumentation.sqlalchemy import (  # noqa: PLC0415
                    SQLAlchemyInstrumentor,  # Lazy import for fork-safety
                )

                SQLAlchemyInstrumentor().instrument(engine=_worker_engine.sync_engine)
                _worker_sqlalchemy_instrumented = True
                logger.debug("worker_sqlalchemy_instrumented")
    return _worker_engine


def get_worker_session() -> AsyncSession:
    """
    Get a new worker database session.

    Sessions must be closed by the caller; the engine and its pool persist.

    Returns:
        AsyncSession: A new database session for the worker task
    """
    global _worker_session_factory  # noqa: PLW0603
    if _worker_session_factory is None:
        with _init_lock:
            if _worker_session_factory is None:
                _worker_session_factory = async_sessionmaker(
                    _get_worker_engine(),
                    class_=AsyncSession,
                    expire_on_commit=False,
                    autocommit=False,
                    autoflush=False,
                )
    return _worker_session_factory()


def get_worker_feed_cache() -> BaseCache:
    """
    Get the worker's shared disruption feed snapshot cache.

    Do not close it in task code; the shutdown signal handler owns it.
    """
    global _worker_feed_cache  # noqa: PLW0603
    if _worker_feed_cache is None:
        with _init_lock:
            if _worker_feed_cache is None:
                from railwatch.services.ns_client import build_feed_cache  # noqa: PLC0415

                _worker_feed_cache = build_feed_cache()
    return _worker_feed_cache


def get_worker_loop() -> asyncio.AbstractEventLoop:
    """
    Get the worker's persistent event loop.

    Raises:
        RuntimeError: If init_worker_resources was not called or the loop is closed
    """
    if _worker_loop is None:
        msg = (
            "Worker event loop not initialized. "
            "Ensure init_worker_resources was called (via worker_process_init signal)."
        )
        raise RuntimeError(msg)
    if _worker_loop.is_closed():
        msg = "Worker event loop has been closed. Cannot run tasks after cleanup_worker_resources has been called."
        raise RuntimeError(msg)
    return _worker_loop
