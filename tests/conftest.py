"""Pytest configuration and fixtures."""

import os

# Settings are read when railwatch.core.config is first imported
os.environ["DEBUG"] = "true"
os.environ["OTEL_ENABLED"] = "false"
os.environ["SECRET_DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["SECRET_CELERY_BROKER_URL"] = "memory://"
os.environ["SECRET_CELERY_RESULT_BACKEND"] = "cache+memory://"
os.environ["SECRET_NS_API_KEY"] = "test-key"
os.environ["ROUTE_TIMEZONE"] = "Europe/Amsterdam"

import uuid
from collections.abc import AsyncGenerator
from typing import Any

import pytest
from aiocache import Cache
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from railwatch.core.database import get_db
from railwatch.main import app
from railwatch.models import Base
from railwatch.models.route import Route, UrgencyLevel
from railwatch.schemas.routes import CreateRouteRequest
from railwatch.schemas.trips import StationRef
from railwatch.services.ns_client import NsApiClient, get_ns_client
from railwatch.services.route_service import RouteService
from tests.helpers.ns_payloads import FakeNsFeed
from tests.helpers.types import RouteFactory


@pytest.fixture
async def db_engine() -> AsyncGenerator[AsyncEngine]:
    """
    Fresh in-memory SQLite database per test.

    StaticPool keeps the single connection alive so every session sees the
    same database; foreign keys are switched on so cascades behave as on
    PostgreSQL.

    Yields:
        AsyncEngine with every table created
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:  # noqa: ANN401
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
async def db_session(db_engine: AsyncEngine) -> AsyncGenerator[AsyncSession]:
    """
    Database session against the per-test database.

    Yields:
        AsyncSession with expire_on_commit disabled, as in the application
    """
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest.fixture
def ns_feed() -> FakeNsFeed:
    """Canned NS API responses; tests fill in the payloads they need."""
    return FakeNsFeed()


@pytest.fixture
async def ns_client(ns_feed: FakeNsFeed) -> AsyncGenerator[NsApiClient]:
    """
    NS client wired to the fake feed with a private in-memory snapshot cache.

    Yields:
        NsApiClient that never leaves the process
    """
    cache = Cache(Cache.MEMORY, namespace=f"test-{uuid.uuid4().hex[:8]}")
    async with NsApiClient(cache=cache, transport=ns_feed.transport()) as client:
        yield client


@pytest.fixture
async def async_client(db_session: AsyncSession, ns_client: NsApiClient) -> AsyncGenerator[AsyncClient]:
    """
    FastAPI asynchronous HTTP client using the test session and fake NS feed.

    Yields:
        Async HTTP client with ASGI transport
    """

    async def override_get_db() -> AsyncGenerator[AsyncSession]:
        yield db_session

    async def override_get_ns_client() -> AsyncGenerator[NsApiClient]:
        yield ns_client

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_ns_client] = override_get_ns_client

    try:
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
            yield client
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def route_factory(db_session: AsyncSession) -> RouteFactory:
    """
    Create persisted routes through RouteService.

    Returns:
        Async factory taking the station codes in travel order plus optional
        overrides for any CreateRouteRequest field
    """

    async def _create(station_codes: list[str] | None = None, **overrides: Any) -> Route:  # noqa: ANN401
        codes = station_codes or ["GVC", "ASD", "UT"]
        fields: dict[str, Any] = {
            "name": "Commute to Utrecht",
            "origin_code": codes[0],
            "origin_name": f"Station {codes[0]}",
            "destination_code": codes[-1],
            "destination_name": f"Station {codes[-1]}",
            "schedule_days": [1, 2, 3, 4, 5],
            "departure_time": "08:00",
            "urgency_level": UrgencyLevel.NORMAL,
            "stations": [StationRef(code=code, name=f"Station {code}") for code in codes],
        }
        fields.update(overrides)
        return await RouteService(db_session).create_route(CreateRouteRequest(**fields))

    return _create
