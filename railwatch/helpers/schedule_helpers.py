"""Pure helpers for deciding when routes are checked.

Route schedules and departure times are wall-clock values in the route
timezone (Europe/Amsterdam by default) while Celery runs in UTC, so every
comparison here converts ``now`` into the route timezone first.
"""

from datetime import date, datetime

from railwatch.core.utils import route_timezone
from railwatch.models.route import UrgencyLevel

# (start minutes before departure, stop once at or below, step minutes)
NORMAL_CHECK_WINDOWS: tuple[tuple[int, int, int], ...] = ((60, 0, 10),)
IMPORTANT_CHECK_WINDOWS: tuple[tuple[int, int, int], ...] = (
    (120, 60, 10),
    (60, 0, 5),
)


def js_weekday(day: date) -> int:
    """
    Weekday index with Sunday as 0, the numbering used by ``schedule_days``.

    Example:
        >>> js_weekday(date(2024, 1, 7))  # Sunday
        0
        >>> js_weekday(date(2024, 1, 8))  # Monday
        1
    """
    return (day.weekday() + 1) % 7


def local_today(now: datetime) -> date:
    """Calendar date of an aware ``now`` in the route timezone."""
    return now.astimezone(route_timezone()).date()


def is_route_scheduled_on(schedule_days: list[int], day: date) -> bool:
    """Whether a route with ``schedule_days`` runs on ``day``."""
    return js_weekday(day) in schedule_days


def minutes_until_departure(departure_time: str, now: datetime) -> float:
    """
    Minutes from ``now`` until today's departure in the route timezone.

    Args:
        departure_time: Local departure time as ``HH:MM``
        now: Aware current time

    Returns:
        Minutes until departure; zero or negative once it has passed
    """
    local_now = now.astimezone(route_timezone())
    hours, minutes = (int(part) for part in departure_time.split(":"))
    departure = local_now.replace(hour=hours, minute=minutes, second=0, microsecond=0)
    return (departure - local_now).total_seconds() / 60


def follow_up_check_delays(departure_time: str, urgency_level: str, now: datetime) -> list[int]:
    """
    Delays, in seconds from ``now``, of the checks leading up to a departure.

    Normal routes are checked every 10 minutes from 60 minutes before
    departure. Important routes are checked every 10 minutes from 120 down to
    60 minutes before, then every 5 minutes. Windows are clipped to the time
    remaining, and checks that would fire immediately are dropped.

    Args:
        departure_time: Local departure time as ``HH:MM``
        urgency_level: ``normal`` or ``important``
        now: Aware current time

    Returns:
        Ascending countdowns in whole seconds; empty when the departure has passed

    Example:
        >>> # 07:00 in Amsterdam, normal route departing 08:00
        >>> follow_up_check_delays("08:00", "normal", datetime.fromisoformat("2024-01-08T06:00:00+00:00"))
        [600, 1200, 1800, 2400, 3000]
    """
    remaining = minutes_until_departure(departure_time, now)
    if remaining <= 0:
        return []

    windows = IMPORTANT_CHECK_WINDOWS if urgency_level == UrgencyLevel.IMPORTANT else NORMAL_CHECK_WINDOWS

    delays: list[int] = []
    for start, stop, step in windows:
        minutes_before = min(start, remaining)
        while minutes_before > stop:
            delay = round((remaining - minutes_before) * 60)
            if delay > 0:
                delays.append(delay)
            minutes_before -= step

    return sorted(delays)
