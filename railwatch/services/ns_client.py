"""Client for the NS (Nederlandse Spoorwegen) public APIs."""

from collections.abc import AsyncGenerator
from typing import Any
from urllib.parse import urlparse

import httpx
import structlog
from aiocache import Cache
from aiocache.base import BaseCache
from aiocache.serializers import PickleSerializer
from opentelemetry.trace import SpanKind

from railwatch.core.config import require_config, settings
from railwatch.core.telemetry import service_span
from railwatch.schemas.ns import (
    NsDisruption,
    NsStation,
    NsTrip,
    parse_disruptions,
    parse_stations,
    parse_trips,
)

logger = structlog.get_logger(__name__)

DISRUPTIONS_PATH = "/disruptions/v3"
TRIPS_PATH = "/reisinformatie-api/api/v3/trips"
STATIONS_PATH = "/nsapp-stations/v2"

DISRUPTIONS_CACHE_KEY = "disruptions:active"
NS_PEER_SERVICE = "ns-api"


class FeedUnavailableError(Exception):
    """An NS feed call failed: transport error, timeout, non-2xx or unreadable body."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        """
        Initialize the error.

        Args:
            message: Human readable failure description
            status_code: Upstream HTTP status, when a response was received
        """
        super().__init__(message)
        self.status_code = status_code


def build_feed_cache() -> BaseCache:
    """Redis-backed cache for feed snapshots, parsed from REDIS_URL."""
    # Format: redis://host:port/db or redis://host:port
    parsed = urlparse(settings.REDIS_URL)
    return Cache(
        Cache.REDIS,
        endpoint=parsed.hostname or "localhost",
        port=parsed.port or 6379,
        serializer=PickleSerializer(),
        namespace="ns",
    )


class NsApiClient:
    """
    Async client for the NS disruption, trip and station feeds.

    Every call is a single attempt; failures surface as FeedUnavailableError and
    retrying is left to the caller. Use as an async context manager so the
    underlying connection pool is closed.
    """

    def __init__(
        self,
        cache: BaseCache | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            cache: Snapshot cache for the disruption feed (Redis when omitted)
            transport: httpx transport override, e.g. ``httpx.MockTransport`` in tests
        """
        self.cache = cache if cache is not None else build_feed_cache()
        self._client = httpx.AsyncClient(
            base_url=settings.NS_API_BASE_URL,
            timeout=settings.NS_API_TIMEOUT,
            transport=transport,
        )

    async def __aenter__(self) -> "NsApiClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying HTTP connection pool."""
        await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        # Raises ConfigurationError before any request is attempted
        require_config("NS_API_KEY")
        return {
            "Ocp-Apim-Subscription-Key": settings.NS_API_KEY or "",
            "Cache-Control": "no-cache",
        }

    async def _get_json(self, path: str, params: dict[str, str] | None = None) -> Any:  # noqa: ANN401
        """
        GET a feed endpoint and decode its JSON body.

        Raises:
            ConfigurationError: If NS_API_KEY is not configured
            FeedUnavailableError: If the call fails or the body is not JSON
        """
        headers = self._headers()

        with service_span(f"ns.get {path}", NS_PEER_SERVICE, kind=SpanKind.CLIENT, ns_path=path) as span:
            try:
                response = await self._client.get(path, params=params, headers=headers)
            except httpx.HTTPError as e:
                logger.error("ns_api_request_failed", path=path, error=str(e))
                msg = f"NS API request to {path} failed: {e!s}"
                raise FeedUnavailableError(msg) from e

            span.set_attribute("http.status_code", response.status_code)
            if not response.is_success:
                logger.error("ns_api_error_response", path=path, status=response.status_code)
                msg = f"NS API returned {response.status_code} for {path}"
                raise FeedUnavailableError(msg, status_code=response.status_code)

            try:
                return response.json()
            except ValueError as e:
                logger.error("ns_api_invalid_json", path=path, status=response.status_code)
                msg = f"NS API returned an unreadable body for {path}"
                raise FeedUnavailableError(msg, status_code=response.status_code) from e

    async def fetch_disruptions(self, use_cache: bool = False) -> list[NsDisruption]:
        """
        Fetch every currently active disruption in one call.

        Route checks triggered together (the morning run) pass ``use_cache=True``
        to share one feed snapshot for DISRUPTION_FEED_CACHE_TTL seconds; manual
        checks always go to the feed.

        Args:
            use_cache: Whether to read and populate the shared snapshot

        Returns:
            Parsed disruptions; malformed records are skipped

        Raises:
            ConfigurationError: If NS_API_KEY is not configured
            FeedUnavailableError: If the feed cannot be read
        """
        if use_cache:
            cached = await self._read_snapshot()
            if cached is not None:
                logger.debug("disruptions_cache_hit", count=len(cached))
                return parse_disruptions(cached)

        logger.info("fetching_disruptions_from_ns_api")
        payload = await self._get_json(DISRUPTIONS_PATH, params={"isActive": "true"})
        if not isinstance(payload, list):
            logger.error("ns_disruptions_unexpected_payload", payload_type=type(payload).__name__)
            msg = "NS disruption feed did not return a list"
            raise FeedUnavailableError(msg)

        if use_cache:
            await self._store_snapshot(payload)

        disruptions = parse_disruptions(payload)
        logger.info("disruptions_fetched", count=len(disruptions), raw_count=len(payload))
        return disruptions

    async def _read_snapshot(self) -> list[Any] | None:
        """Read the shared feed snapshot; an unreachable cache counts as a miss."""
        try:
            return await self.cache.get(DISRUPTIONS_CACHE_KEY)
        except Exception as e:
            logger.warning("disruptions_cache_read_failed", error=str(e), error_type=type(e).__name__)
            return None

    async def _store_snapshot(self, payload: list[Any]) -> None:
        try:
            await self.cache.set(DISRUPTIONS_CACHE_KEY, payload, ttl=settings.DISRUPTION_FEED_CACHE_TTL)
        except Exception as e:
            logger.warning("disruptions_cache_write_failed", error=str(e), error_type=type(e).__name__)

    async def fetch_trips(self, origin_code: str, destination_code: str) -> list[NsTrip]:
        """
        Fetch candidate trips between two stations.

        Args:
            origin_code: Origin station code (e.g. "ASD")
            destination_code: Destination station code (e.g. "UT")

        Returns:
            Parsed trips in feed order
        """
        logger.info("fetching_trips_from_ns_api", origin=origin_code, destination=destination_code)
        payload = await self._get_json(
            TRIPS_PATH,
            params={"fromStation": origin_code, "toStation": destination_code},
        )
        raw_trips = payload.get("trips") if isinstance(payload, dict) else None
        return parse_trips(raw_trips or [])

    async def fetch_stations(self) -> list[NsStation]:
        """Fetch the station list for NS_STATION_COUNTRY_CODES."""
        logger.info("fetching_stations_from_ns_api", countries=settings.NS_STATION_COUNTRY_CODES)
        payload = await self._get_json(
            STATIONS_PATH,
            params={"countryCodes": settings.NS_STATION_COUNTRY_CODES},
        )
        raw_stations = payload.get("payload") if isinstance(payload, dict) else None
        return parse_stations(raw_stations or [])


async def get_ns_client() -> AsyncGenerator[NsApiClient]:
    """
    Dependency providing an NS client for the duration of a request.

    Yields:
        NsApiClient: Client closed when the request finishes
    """
    async with NsApiClient() as client:
        yield client
