"""Route options between two stations, for picking the stations of a new route."""

import structlog
from opentelemetry.trace import SpanKind
from sqlalchemy.ext.asyncio import AsyncSession

from railwatch.core.telemetry import service_span
from railwatch.helpers.trip_helpers import collect_uic_codes, resolve_route_options
from railwatch.schemas.trips import RouteOption
from railwatch.services.ns_client import NsApiClient
from railwatch.services.station_service import StationService

logger = structlog.get_logger(__name__)


class TripOptionService:
    """Turns NS trip search results into distinct route options."""

    def __init__(self, db: AsyncSession, ns_client: NsApiClient) -> None:
        """
        Initialize the trip option service.

        Args:
            db: Database session
            ns_client: Client for the NS trip feed
        """
        self.ns_client = ns_client
        self.station_service = StationService(db)

    async def fetch_route_options(self, origin_code: str, destination_code: str) -> list[RouteOption]:
        """
        Fetch trips between two stations and reduce them to route options.

        UIC codes in the results are resolved against the station directory in
        a single query before the trips are deduplicated.

        Args:
            origin_code: Origin station code
            destination_code: Destination station code

        Returns:
            Up to five distinct route options in feed order

        Raises:
            ConfigurationError: If NS_API_KEY is not configured
            FeedUnavailableError: If the trip feed cannot be read
        """
        with service_span(
            "trip_options.fetch_route_options",
            "railwatch",
            kind=SpanKind.INTERNAL,
            origin=origin_code,
            destination=destination_code,
        ) as span:
            trips = await self.ns_client.fetch_trips(origin_code, destination_code)
            uic_lookup = await self.station_service.get_stations_by_uic_codes(collect_uic_codes(trips))
            options = resolve_route_options(trips, uic_lookup)
            span.set_attribute("trip_options.count", len(options))

        logger.info(
            "route_options_resolved",
            origin=origin_code,
            destination=destination_code,
            trips=len(trips),
            resolved_stations=len(uic_lookup),
            options=len(options),
        )
        return options
