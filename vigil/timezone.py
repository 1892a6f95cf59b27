"""
Timezone conversion utilities.
"""

from datetime import datetime, time

import pytz


def parse_hhmm(value: str) -> time:
    """Parse "22:00" into a time. Raises ValueError on bad input."""
    hours, minutes = value.strip().split(":")
    return time(int(hours), int(minutes))


def to_local(utc_dt: datetime, tz_name: str | None) -> datetime:
    """
    Convert a datetime to the holder's timezone.

    Naive datetimes are treated as UTC; unknown timezones fall back to UTC.
    """
    if utc_dt.tzinfo is None:
        utc_dt = pytz.UTC.localize(utc_dt)

    try:
        tz = pytz.timezone(tz_name) if tz_name else pytz.UTC
    except pytz.UnknownTimeZoneError:
        tz = pytz.UTC
    return utc_dt.astimezone(tz)


def is_valid_timezone(tz_name: str) -> bool:
    try:
        pytz.timezone(tz_name)
    except pytz.UnknownTimeZoneError:
        return False
    return True


def in_quiet_hours(
    instant: datetime,
    tz_name: str | None,
    quiet_start: str | None,
    quiet_end: str | None,
) -> bool:
    """
    Check whether an instant falls in a holder's quiet interval.

    The interval is [quiet_start, quiet_end) in the holder's local time and
    may wrap midnight (e.g. 22:00 to 06:00). A missing bound or an empty
    interval means no quiet hours.
    """
    if not quiet_start or not quiet_end:
        return False

    start = parse_hhmm(quiet_start)
    end = parse_hhmm(quiet_end)
    if start == end:
        return False

    local_time = to_local(instant, tz_name).time()
    if start < end:
        return start <= local_time < end
    # Overnight interval
    return local_time >= start or local_time < end


def format_time_in_timezone(utc_dt: datetime, tz_name: str | None) -> str:
    """Format just the local clock time, e.g. "14:00"."""
    return to_local(utc_dt, tz_name).strftime("%H:%M")
