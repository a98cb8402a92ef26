"""Pure helpers that turn raw NS trip results into display-ready route options."""

import math
from collections.abc import Mapping

from railwatch.schemas.ns import NsTrip, NsTripStop
from railwatch.schemas.trips import RouteOption, StationRef

PUBLIC_TRANSIT = "PUBLIC_TRANSIT"
MAX_ROUTE_OPTIONS = 5
MAX_VIA_STATIONS = 3
DIRECT = "Direct"


def _leg_points(trip: NsTrip) -> list[NsTripStop]:
    """Origin, stops and destination of every public transit leg, in travel order."""
    points: list[NsTripStop] = []
    for leg in trip.legs:
        # Walking and other non-rail legs carry no useful stations
        if leg.travel_type and leg.travel_type != PUBLIC_TRANSIT:
            continue
        points.append(leg.origin)
        points.extend(leg.stops)
        points.append(leg.destination)
    return points


def collect_uic_codes(trips: list[NsTrip]) -> list[str]:
    """
    Collect every distinct UIC code referenced by leg origins, destinations and stops.

    Args:
        trips: Parsed trips from the trip feed

    Returns:
        Distinct UIC codes in order of first appearance
    """
    codes: dict[str, None] = {}
    for trip in trips:
        for leg in trip.legs:
            for point in (leg.origin, *leg.stops, leg.destination):
                if point.uic_code:
                    codes.setdefault(point.uic_code, None)
    return list(codes)


def resolve_trip_station(point: NsTripStop, uic_lookup: Mapping[str, StationRef]) -> StationRef | None:
    """
    Resolve a trip stop to a station code and display name.

    The UIC lookup wins. Otherwise the stop's own station code is used, unless
    it is purely numeric (a placeholder, not a real code).

    Args:
        point: Stop from a trip leg
        uic_lookup: UIC code to station, resolved in one batch from the station directory

    Returns:
        Resolved station, or None when neither identifier is usable

    Example:
        >>> lookup = {"8400058": StationRef(code="ASD", name="Amsterdam Centraal")}
        >>> resolve_trip_station(NsTripStop(uicCode="8400058"), lookup).code
        'ASD'
        >>> resolve_trip_station(NsTripStop(stationCode="8400999"), lookup) is None
        True
    """
    if point.uic_code and point.uic_code in uic_lookup:
        return uic_lookup[point.uic_code]
    if point.station_code and not point.station_code.isdigit():
        return StationRef(code=point.station_code, name=point.name or point.station_code)
    return None


def resolve_trip_stations(trip: NsTrip, uic_lookup: Mapping[str, StationRef]) -> list[StationRef]:
    """Ordered, deduplicated stations of a trip's public transit legs."""
    stations: list[StationRef] = []
    seen_codes: set[str] = set()
    for point in _leg_points(trip):
        station = resolve_trip_station(point, uic_lookup)
        if station is None or station.code in seen_codes:
            continue
        seen_codes.add(station.code)
        stations.append(station)
    return stations


def build_via_stations(stations: list[StationRef]) -> str:
    """
    Summarize the interior stations of a route for display.

    Up to three interior stations are all shown. Longer routes are sampled at
    a fixed stride of ``ceil(n / 3)`` so at most three names appear.

    Args:
        stations: Full ordered station list, origin and destination included

    Returns:
        Comma separated names, or ``"Direct"`` when there are no interior stations

    Example:
        >>> names = ["Origin", "A", "B", "C", "D", "E", "F", "G", "Destination"]
        >>> build_via_stations([StationRef(code=n, name=n) for n in names])
        'A, D, G'
    """
    interior = stations[1:-1]
    if len(interior) > MAX_VIA_STATIONS:
        stride = math.ceil(len(interior) / MAX_VIA_STATIONS)
        interior = interior[::stride]
    return ", ".join(station.name for station in interior) or DIRECT


def route_signature(stations: list[StationRef]) -> str:
    """Ordered station codes joined with ``-``, e.g. ``ASD-UT-GVC``."""
    return "-".join(station.code for station in stations)


def resolve_route_options(
    trips: list[NsTrip],
    uic_lookup: Mapping[str, StationRef],
    limit: int = MAX_ROUTE_OPTIONS,
) -> list[RouteOption]:
    """
    Reduce candidate trips to distinct, display-ready route options.

    Trips resolving to fewer than two stations are dropped. Trips whose
    station sequence was already seen are dropped regardless of timing or
    transfer differences; the first one in feed order wins.

    Args:
        trips: Parsed trips in feed order
        uic_lookup: UIC code to station mapping
        limit: Maximum number of options to return

    Returns:
        Route options in feed order, at most ``limit``
    """
    options: list[RouteOption] = []
    seen_signatures: set[str] = set()

    for trip in trips:
        if len(options) >= limit:
            break

        stations = resolve_trip_stations(trip, uic_lookup)
        if len(stations) < 2:
            continue

        signature = route_signature(stations)
        if signature in seen_signatures:
            continue
        seen_signatures.add(signature)

        options.append(
            RouteOption(
                uid=trip.uid or signature,
                duration_in_minutes=trip.planned_duration_in_minutes,
                transfers=trip.transfers,
                stations=stations,
                via_stations=build_via_stations(stations),
            )
        )

    return options
