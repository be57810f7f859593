"""
Date helpers in the deployment timezone.

Usage:
    from opsdesk.utils.dates import today_local, as_local_date

    today_local()                       -> date.today() in Asia/Qatar
    as_local_date(datetime(..., tz))    -> calendar date in Asia/Qatar
"""
from datetime import date, datetime
from zoneinfo import ZoneInfo

from opsdesk.config import get_settings


def _tz() -> ZoneInfo:
    return ZoneInfo(get_settings().TIMEZONE)


def today_local() -> date:
    return datetime.now(_tz()).date()


def as_local_date(value: date | datetime | None) -> date | None:
    """
    Normalise a DB value to a calendar date.

    Aware datetimes are converted to the deployment timezone first; naive
    ones (SQLite in tests) are taken as-is.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(_tz())
        return value.date()
    return value
