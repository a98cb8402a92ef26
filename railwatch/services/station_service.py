"""Station directory: cached NS stations and lookups against them."""

from typing import TypedDict

import structlog
from sqlalchemy import String, cast, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from railwatch.core.database import upsert_insert
from railwatch.core.utils import utc_now
from railwatch.models.station import Station
from railwatch.schemas.ns import NsStation
from railwatch.schemas.trips import StationRef
from railwatch.services.ns_client import NsApiClient

logger = structlog.get_logger(__name__)

MIN_SEARCH_LENGTH = 2
MAX_SEARCH_RESULTS = 10
DEFAULT_COUNTRY = "NL"


class StationSyncResult(TypedDict):
    """Outcome of a bulk station sync."""

    synced: int
    total: int


def station_values_from_feed(station: NsStation) -> dict[str, object]:
    """
    Map a feed station onto Station column values.

    Missing names fall back to the station code and a missing country to ``NL``.

    Args:
        station: Parsed station; ``code`` must be non-empty

    Returns:
        Column values for an insert or update
    """
    return {
        "code": station.code,
        "uic_code": station.uic_code,
        "name_long": station.names.long or station.code,
        "name_medium": station.names.medium or station.code,
        "name_short": station.names.short or station.code,
        "synonyms": list(station.synonyms),
        "latitude": station.lat,
        "longitude": station.lng,
        "country": station.country or DEFAULT_COUNTRY,
    }


class StationService:
    """Service for the station directory."""

    def __init__(self, db: AsyncSession, ns_client: NsApiClient | None = None) -> None:
        """
        Initialize the station service.

        Args:
            db: Database session
            ns_client: NS client, only needed for sync_all_stations
        """
        self.db = db
        self.ns_client = ns_client

    async def upsert_station(self, station: NsStation) -> None:
        """Insert or refresh a station keyed by its code."""
        values = station_values_from_feed(station)
        values["last_updated"] = utc_now()

        stmt = upsert_insert(self.db, Station).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[Station.code],
            set_={key: stmt.excluded[key] for key in values if key != "code"},
        )
        await self.db.execute(stmt)

    async def sync_all_stations(self) -> StationSyncResult:
        """
        Refresh the directory from the NS station feed.

        Entries without a code are skipped. The feed is fetched before anything
        is written, so a feed failure leaves the directory untouched.

        Returns:
            Number of stations written and number received

        Raises:
            FeedUnavailableError: If the station feed cannot be read
        """
        if self.ns_client is None:
            msg = "StationService needs an NsApiClient to sync stations"
            raise RuntimeError(msg)

        stations = await self.ns_client.fetch_stations()

        synced = 0
        for station in stations:
            if not station.code:
                logger.debug("station_without_code_skipped", uic_code=station.uic_code)
                continue
            await self.upsert_station(station)
            synced += 1

        await self.db.commit()
        logger.info("stations_synced", synced=synced, total=len(stations))
        return StationSyncResult(synced=synced, total=len(stations))

    async def get_station_by_code(self, code: str) -> Station | None:
        """Look up a station by its short code."""
        result = await self.db.execute(select(Station).where(Station.code == code))
        return result.scalar_one_or_none()

    async def get_station_by_uic_code(self, uic_code: str) -> Station | None:
        """Look up a station by its UIC code."""
        result = await self.db.execute(select(Station).where(Station.uic_code == uic_code).limit(1))
        return result.scalar_one_or_none()

    async def get_stations_by_uic_codes(self, uic_codes: list[str]) -> dict[str, StationRef]:
        """
        Resolve many UIC codes in a single query.

        Args:
            uic_codes: UIC codes to resolve

        Returns:
            Mapping of UIC code to station code and long name; unknown codes are absent
        """
        if not uic_codes:
            return {}

        result = await self.db.execute(
            select(Station.uic_code, Station.code, Station.name_long).where(Station.uic_code.in_(set(uic_codes)))
        )
        return {uic_code: StationRef(code=code, name=name_long) for uic_code, code, name_long in result.all()}

    async def count_stations(self) -> int:
        """Number of stations in the directory."""
        result = await self.db.execute(select(func.count()).select_from(Station))
        return result.scalar_one()

    async def search_stations(self, query: str) -> list[Station]:
        """
        Search stations by code, any of the names, or a synonym.

        Matching is case-insensitive. An exact code match sorts first, then
        shorter long names (so "Utrecht Centraal" beats "Utrecht Overvecht").

        Args:
            query: Search text; fewer than two characters returns nothing

        Returns:
            At most ten matching stations
        """
        term = query.strip()
        if len(term) < MIN_SEARCH_LENGTH:
            return []

        pattern = f"%{term}%"
        result = await self.db.execute(
            select(Station).where(
                or_(
                    Station.code.ilike(pattern),
                    Station.name_long.ilike(pattern),
                    Station.name_medium.ilike(pattern),
                    Station.name_short.ilike(pattern),
                    cast(Station.synonyms, String).ilike(pattern),
                )
            )
        )
        stations = list(result.scalars().all())

        upper_term = term.upper()
        stations.sort(key=lambda station: (station.code.upper() != upper_term, len(station.name_long)))
        return stations[:MAX_SEARCH_RESULTS]
