"""
Timezone utility functions for the Score Predictor application
"""

from datetime import datetime, timezone

import pytz
from flask import current_app, has_app_context


def get_app_timezone():
    """Get the application's configured timezone"""
    timezone_name = "UTC"
    if has_app_context():
        timezone_name = current_app.config.get("TIMEZONE", "UTC")
    try:
        return pytz.timezone(timezone_name)
    except pytz.UnknownTimeZoneError:
        return pytz.UTC


def get_utc_time():
    """Get current time in UTC"""
    return datetime.now(timezone.utc)


def ensure_utc(dt):
    """Return an aware UTC datetime; naive values are assumed to be UTC.

    SQLite hands back naive datetimes even for columns written with tzinfo.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_iso(dt):
    """Serialize a datetime as an ISO-8601 UTC string (None passes through)"""
    dt = ensure_utc(dt)
    return dt.isoformat() if dt else None


def convert_to_app_timezone(dt):
    """Convert a datetime to the application's timezone"""
    if dt is None:
        return None

    return ensure_utc(dt).astimezone(get_app_timezone())
