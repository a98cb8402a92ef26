"""Pure helper functions for disruption matching logic.

This module contains pure functions (no side effects, no database access) for
narrowing the NS disruption feed down to one route and deriving the display
fields stored per disruption. They are shared by the sync service, the CLI and
the test suite.
"""

from dataclasses import dataclass
from datetime import datetime

import structlog

from railwatch.core.utils import route_timezone
from railwatch.schemas.ns import NsDisruption, NsTimespan

logger = structlog.get_logger(__name__)

UNKNOWN_PERIOD = "Unknown period"
PERIOD_FORMAT = "%d-%m-%Y %H:%M"

_INT32_MASK = 0xFFFFFFFF


@dataclass(frozen=True)
class MatchedDisruption:
    """A feed disruption together with the route stations it names."""

    disruption: NsDisruption
    affected_stations: list[str]


def extract_affected_stations(disruption: NsDisruption, route_station_codes: list[str]) -> list[str]:
    """
    Extract the route stations named by a disruption's publication sections.

    Pure function for easy testing without database dependencies.

    Args:
        disruption: Parsed disruption from the feed
        route_station_codes: Station codes of the route, in travel order

    Returns:
        Deduplicated intersection in order of first mention. Empty when the
        disruption has no publication sections or names none of the stations.

    Example:
        >>> disruption = NsDisruption.model_validate({
        ...     "id": "d1",
        ...     "publicationSections": [
        ...         {"section": {"stations": [{"stationCode": "ASD"}, {"stationCode": "RTD"}]}},
        ...         {"section": {"stations": [{"stationCode": "ASD"}]}},
        ...     ],
        ... })
        >>> extract_affected_stations(disruption, ["GVC", "ASD", "UT"])
        ['ASD']
    """
    route_codes = set(route_station_codes)
    affected = [code for code in disruption.station_codes() if code in route_codes]
    return list(dict.fromkeys(affected))


def match_disruptions_to_route(
    disruptions: list[NsDisruption],
    route_station_codes: list[str],
) -> dict[str, MatchedDisruption]:
    """
    Filter the feed down to disruptions that touch a route.

    Disruptions with an empty intersection are dropped. When the feed repeats
    an id, the first occurrence wins.

    Args:
        disruptions: Full parsed disruption feed
        route_station_codes: Station codes of the route, in travel order

    Returns:
        Mapping of external disruption id to the matched disruption, in feed order
    """
    matched: dict[str, MatchedDisruption] = {}
    for disruption in disruptions:
        if disruption.id in matched:
            continue
        affected = extract_affected_stations(disruption, route_station_codes)
        if affected:
            matched[disruption.id] = MatchedDisruption(disruption=disruption, affected_stations=affected)
    return matched


def format_timespan_moment(value: str) -> str:
    """
    Render a feed timestamp as local ``DD-MM-YYYY HH:MM``.

    Aware timestamps are converted to the route timezone; naive ones are shown
    as published. Unparseable values are returned unchanged.

    Example:
        >>> format_timespan_moment("2024-01-01T08:00:00+01:00")
        '01-01-2024 08:00'
    """
    try:
        moment = datetime.fromisoformat(value)
    except ValueError:
        logger.debug("timespan_unparseable", value=value)
        return value
    if moment.tzinfo is not None:
        moment = moment.astimezone(route_timezone())
    return moment.strftime(PERIOD_FORMAT)


def _first_timespan(timespans: list[NsTimespan]) -> NsTimespan | None:
    return timespans[0] if timespans else None


def extract_period(disruption: NsDisruption) -> str:
    """
    Build the human-readable period shown for a disruption.

    Uses the first timespan: ``"<start> – <end>"`` when both ends are known,
    ``"From <start>"`` when only the start is. Without timespan data the phase
    label is used, then ``"Unknown period"``.

    Args:
        disruption: Parsed disruption from the feed

    Returns:
        Display string for the disruption period
    """
    timespan = _first_timespan(disruption.timespans)
    if timespan is not None:
        start = format_timespan_moment(timespan.start) if timespan.start else ""
        end = format_timespan_moment(timespan.end) if timespan.end else ""
        if start and end:
            return f"{start} – {end}"
        if start:
            return f"From {start}"

    return disruption.phase or UNKNOWN_PERIOD


def _to_int32(value: int) -> int:
    value &= _INT32_MASK
    return value - (1 << 32) if value & 0x80000000 else value


def content_fingerprint(disruption_type: str, title: str, period: str, advice: str | None = None) -> str:
    """
    Fingerprint the display content of a disruption for change detection.

    A 32-bit rolling hash (``h = h * 31 + code``, truncated to a signed 32-bit
    integer after each step) over the UTF-16 code units of
    ``type|title|period|advice``, rendered in hexadecimal with a leading ``-``
    for negative values. Not cryptographic; only deterministic.

    Args:
        disruption_type: MAINTENANCE, DISRUPTION or CALAMITY
        title: Disruption title
        period: Display period from extract_period
        advice: Expected duration text, if any

    Returns:
        Hex string, stable across processes for equal input

    Example:
        >>> first = content_fingerprint("DISRUPTION", "Signal failure", "10:00 – 11:00")
        >>> first == content_fingerprint("DISRUPTION", "Signal failure", "10:00 – 11:00", "")
        True
        >>> content_fingerprint("a", "", "", "")
        '2df8fb'
    """
    source = f"{disruption_type}|{title}|{period}|{advice or ''}"
    encoded = source.encode("utf-16-le")

    accumulator = 0
    for index in range(0, len(encoded), 2):
        code_unit = encoded[index] | (encoded[index + 1] << 8)
        accumulator = _to_int32((accumulator << 5) - accumulator + code_unit)

    return format(accumulator, "x")
