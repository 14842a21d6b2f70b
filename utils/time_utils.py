"""
Time Helpers

All timestamps are stored as naive UTC. Notification windows are keyed by the
UK-local time, since that is the clock subscribers see on their alerts.
"""

from datetime import datetime, timezone
import pytz

UK_TIMEZONE = 'Europe/London'


def utcnow():
    """
    Current time as a naive UTC datetime (the storage convention).
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def uk_date_key(moment=None, fmt='%Y-%m-%d'):
    """
    Convert a naive UTC datetime to the UK-local calendar date.

    Args:
        moment (datetime, optional): Naive UTC datetime (default: now)
        fmt (str): strftime format for the local time

    Returns:
        str: Local time in the given format, e.g. "2025-06-30"
    """
    if moment is None:
        moment = utcnow()
    london = pytz.timezone(UK_TIMEZONE)
    return pytz.utc.localize(moment).astimezone(london).strftime(fmt)
