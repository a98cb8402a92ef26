"""Celery Beat periodic task schedules.

Scheduled tasks:
- check_routes_for_today: 04:00 and 05:00 UTC (05:00 and 06:00 in Amsterdam
  winter time) - check every route that runs today and queue follow-up checks
  before each departure
- sync_all_stations: monthly - refresh the station directory
"""

from celery.schedules import crontab

from railwatch.celery.app import celery_app

# Seconds a queued periodic task may wait before it is discarded
MORNING_CHECK_EXPIRES = 1800
STATION_SYNC_EXPIRES = 3600

celery_app.conf.beat_schedule = {
    "early-morning-disruption-check": {
        "task": "railwatch.celery.tasks.check_routes_for_today",
        "schedule": crontab(hour=4, minute=0),
        "options": {
            "expires": MORNING_CHECK_EXPIRES,
        },
    },
    "morning-disruption-check": {
        "task": "railwatch.celery.tasks.check_routes_for_today",
        "schedule": crontab(hour=5, minute=0),
        "options": {
            "expires": MORNING_CHECK_EXPIRES,
        },
    },
    "monthly-station-sync": {
        "task": "railwatch.celery.tasks.sync_all_stations",
        "schedule": crontab(day_of_month=1, hour=3, minute=0),
        "options": {
            "expires": STATION_SYNC_EXPIRES,
        },
    },
}
