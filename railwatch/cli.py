#!/usr/bin/env python3
"""Operator CLI for running RailWatch jobs by hand.

Each command runs in-process against the configured database and the live NS
API, without going through Celery.

Usage:
    # Refresh the station directory from NS
    uv run python -m railwatch.cli sync-stations

    # Run one disruption sync cycle for a route
    uv run python -m railwatch.cli check-route <route-id>

    # Check every route scheduled for today and show the follow-up plan
    uv run python -m railwatch.cli check-today

    # Show route options between two stations
    uv run python -m railwatch.cli route-options ASD UT
"""

import argparse
import asyncio
import sys
import uuid

from aiocache import Cache
from sqlalchemy.ext.asyncio import AsyncSession

from railwatch.core.config import ConfigurationError
from railwatch.core.database import get_session_factory
from railwatch.core.utils import utc_now
from railwatch.helpers.schedule_helpers import follow_up_check_delays, local_today
from railwatch.services.disruption_sync_service import DisruptionSyncService
from railwatch.services.ns_client import FeedUnavailableError, NsApiClient
from railwatch.services.route_service import RouteNotFoundError, RouteService
from railwatch.services.station_service import StationService
from railwatch.services.trip_option_service import TripOptionService


async def cmd_sync_stations(args: argparse.Namespace, session: AsyncSession, client: NsApiClient) -> int:
    """
    Refresh the station directory.

    Args:
        args: Parsed command-line arguments
        session: Database session
        client: NS API client

    Returns:
        Exit code (0 for success, 1 for error)
    """
    result = await StationService(session, client).sync_all_stations()
    print("✅ Station directory synced")
    print(f"   Synced: {result['synced']} of {result['total']}")
    return 0


async def cmd_check_route(args: argparse.Namespace, session: AsyncSession, client: NsApiClient) -> int:
    """
    Run one disruption sync cycle for a route.

    Args:
        args: Parsed command-line arguments
        session: Database session
        client: NS API client

    Returns:
        Exit code (0 for success, 1 for error)
    """
    try:
        route_id = uuid.UUID(args.route_id)
    except ValueError:
        print(f"❌ Error: Invalid UUID '{args.route_id}'", file=sys.stderr)
        return 1

    result = await DisruptionSyncService(session, client).sync_route(route_id)

    print(f"✅ Checked route {route_id}")
    print(f"   Disruptions found: {result.disruptions_found}")
    print(f"   New:               {result.created}")
    print(f"   Reactivated:       {result.reactivated}")
    print(f"   Content changed:   {result.content_changed}")
    print(f"   Deactivated:       {result.deactivated}")
    print(f"   Active now:        {'yes' if result.has_active_disruptions else 'no'}")
    return 0


async def cmd_check_today(args: argparse.Namespace, session: AsyncSession, client: NsApiClient) -> int:
    """
    Check every route scheduled for today.

    Args:
        args: Parsed command-line arguments
        session: Database session
        client: NS API client

    Returns:
        Exit code (0 for success, 1 for error)
    """
    now = utc_now()
    routes = await RouteService(session).get_routes_for_today(local_today(now))
    if not routes:
        print("No routes scheduled for today.")
        return 0

    sync_service = DisruptionSyncService(session, client)
    for route in routes:
        result = await sync_service.sync_route(route.id, use_cache=True, now=now)
        delays = follow_up_check_delays(route.departure_time, route.urgency_level, now)
        marker = "⚠️ " if result.has_active_disruptions else "✅"
        print(f"{marker} {route.name} ({route.departure_time}, {route.urgency_level})")
        print(f"   Disruptions: {result.disruptions_found}, changed: {'yes' if result.changed else 'no'}")
        print(f"   Follow-up checks before departure: {len(delays)}")
    return 0


async def cmd_route_options(args: argparse.Namespace, session: AsyncSession, client: NsApiClient) -> int:
    """
    Print route options between two stations.

    Args:
        args: Parsed command-line arguments
        session: Database session
        client: NS API client

    Returns:
        Exit code (0 for success, 1 for error)
    """
    options = await TripOptionService(session, client).fetch_route_options(args.origin, args.destination)
    if not options:
        print(f"No route options found from {args.origin} to {args.destination}.")
        return 0

    for index, option in enumerate(options, start=1):
        codes = " → ".join(station.code for station in option.stations)
        print(f"{index}. {codes}")
        print(f"   Via:       {option.via_stations}")
        print(f"   Duration:  {option.duration_in_minutes} min, transfers: {option.transfers}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Argument parser for all commands."""
    parser = argparse.ArgumentParser(
        description="RailWatch operator CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  uv run python -m railwatch.cli sync-stations
  uv run python -m railwatch.cli check-route 550e8400-e29b-41d4-a716-446655440000
  uv run python -m railwatch.cli check-today
  uv run python -m railwatch.cli route-options ASD UT
        """,
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    subparsers.add_parser(
        "sync-stations",
        help="Refresh the station directory from NS",
    )

    check_route_parser = subparsers.add_parser(
        "check-route",
        help="Run one disruption sync cycle for a route",
        description="Fetch the NS disruption feed and reconcile it against one route.",
    )
    check_route_parser.add_argument("route_id", type=str, help="Route UUID")

    subparsers.add_parser(
        "check-today",
        help="Check every route scheduled for today",
        description="Sync each route whose schedule includes today (route timezone) "
        "and report how many follow-up checks it would get.",
    )

    route_options_parser = subparsers.add_parser(
        "route-options",
        help="Show route options between two stations",
    )
    route_options_parser.add_argument("origin", type=str, help="Origin station code, e.g. ASD")
    route_options_parser.add_argument("destination", type=str, help="Destination station code, e.g. UT")

    return parser


def main(argv: list[str] | None = None) -> int:
    """
    Main entry point for the CLI.

    Returns:
        Exit code (0 for success, 1 for error)
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    command_handlers = {
        "sync-stations": cmd_sync_stations,
        "check-route": cmd_check_route,
        "check-today": cmd_check_today,
        "route-options": cmd_route_options,
    }

    if handler := command_handlers.get(args.command):

        async def run_with_session() -> int:
            # In-memory snapshot cache, so check-today fetches the feed once per run
            async with get_session_factory()() as session, NsApiClient(cache=Cache(Cache.MEMORY)) as client:
                try:
                    return await handler(args, session, client)
                except RouteNotFoundError as e:
                    print(f"❌ Error: {e}", file=sys.stderr)
                    return 1
                except ConfigurationError as e:
                    print(f"❌ Configuration error: {e}", file=sys.stderr)
                    return 1
                except FeedUnavailableError as e:
                    print(f"❌ NS API unavailable: {e}", file=sys.stderr)
                    return 1

        return asyncio.run(run_with_session())

    print(f"❌ Unknown command: {args.command}", file=sys.stderr)
    return 1


if __name__ == "__main__":
    sys.exit(main())
