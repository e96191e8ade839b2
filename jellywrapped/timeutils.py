from datetime import date, datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .config import settings

MONTH_NAMES = [
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
]

# 0 = Sunday, matching SQLite strftime('%w')
DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]


class UnknownTimezoneError(ValueError):
    """Raised when a caller asks for an IANA zone that does not exist."""


def resolve_timezone(name: Optional[str] = None) -> ZoneInfo:
    """Resolve a timezone name, falling back to the configured default."""
    tz_name = name or settings.timezone
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError, OSError) as e:
        raise UnknownTimezoneError(f"Unknown timezone: {tz_name}") from e


def to_local(moment: datetime, tz: ZoneInfo) -> datetime:
    """Convert to local time. Naive datetimes are taken to be UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(tz)


def hour_in_timezone(moment: datetime, tz: ZoneInfo) -> int:
    return to_local(moment, tz).hour


def day_of_week_in_timezone(moment: datetime, tz: ZoneInfo) -> int:
    """Day of week with 0 = Sunday and 6 = Saturday."""
    return to_local(moment, tz).isoweekday() % 7


def month_in_timezone(moment: datetime, tz: ZoneInfo) -> int:
    return to_local(moment, tz).month


def date_in_timezone(moment: datetime, tz: ZoneInfo) -> date:
    return to_local(moment, tz).date()
