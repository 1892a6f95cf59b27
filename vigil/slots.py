"""
The fixed catalog of 48 daily half-hour windows.

Windows are defined in the coverage timezone (SLOT_TIMEZONE). An occurrence
of a window is identified by (slot_index, local date of its start); that
date is what attendance records and reminder keys use.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

import pytz

from .config import get_slot_timezone
from .constants import SLOT_MINUTES, SLOTS_PER_DAY
from .errors import SlotNotFoundError

SLOT_LENGTH = timedelta(minutes=SLOT_MINUTES)


@dataclass(frozen=True)
class SlotWindow:
    """One of the 48 daily windows, e.g. index 12 is 06:00–06:30."""

    index: int

    @property
    def start_minute(self) -> int:
        return self.index * SLOT_MINUTES

    @property
    def start_time(self) -> time:
        return time(self.start_minute // 60, self.start_minute % 60)

    @property
    def label(self) -> str:
        end_minute = (self.start_minute + SLOT_MINUTES) % (24 * 60)
        return (
            f"{self.start_minute // 60:02d}:{self.start_minute % 60:02d}"
            f"–{end_minute // 60:02d}:{end_minute % 60:02d}"
        )

    def occurrence(self, on: date, tz_name: str | None = None) -> "SlotOccurrence":
        """The concrete UTC interval of this window on a local date."""
        tz = _get_tz(tz_name)
        local_start = tz.localize(datetime.combine(on, self.start_time))
        start = local_start.astimezone(pytz.UTC)
        return SlotOccurrence(window=self, on=on, start=start, end=start + SLOT_LENGTH)


@dataclass(frozen=True)
class SlotOccurrence:
    window: SlotWindow
    on: date
    start: datetime
    end: datetime

    @property
    def slot_index(self) -> int:
        return self.window.index

    def overlap(self, start: datetime, end: datetime) -> timedelta:
        """Length of the intersection with [start, end)."""
        latest_start = max(self.start, start)
        earliest_end = min(self.end, end)
        return max(earliest_end - latest_start, timedelta(0))


def _get_tz(tz_name: str | None):
    return pytz.timezone(tz_name or get_slot_timezone())


def get_window(slot_index: int) -> SlotWindow:
    """Look up a window by index, rejecting anything outside 0..47."""
    if not isinstance(slot_index, int) or not 0 <= slot_index < SLOTS_PER_DAY:
        raise SlotNotFoundError(f"Slot {slot_index} does not exist")
    return SlotWindow(slot_index)


def all_windows() -> list[SlotWindow]:
    return [SlotWindow(i) for i in range(SLOTS_PER_DAY)]


def parse_label(label: str) -> SlotWindow:
    """
    Parse a label such as "06:00–06:30" (en dash or hyphen) into a window.

    Raises:
        SlotNotFoundError: If the label is not one of the 48 windows
    """
    normalized = label.strip().replace("-", "–")
    try:
        start_str, end_str = normalized.split("–")
        hours, minutes = map(int, start_str.split(":"))
        end_hours, end_minutes = map(int, end_str.split(":"))
    except ValueError:
        raise SlotNotFoundError(f"Unrecognised slot label: {label!r}")

    start_minute = hours * 60 + minutes
    end_minute = (end_hours * 60 + end_minutes) % (24 * 60)
    if (
        start_minute % SLOT_MINUTES
        or (start_minute + SLOT_MINUTES) % (24 * 60) != end_minute
    ):
        raise SlotNotFoundError(f"Unrecognised slot label: {label!r}")
    return get_window(start_minute // SLOT_MINUTES)


def local_date(instant: datetime, tz_name: str | None = None) -> date:
    """Calendar date of an instant in the coverage timezone."""
    return instant.astimezone(_get_tz(tz_name)).date()


def occurrence_at(instant: datetime, tz_name: str | None = None) -> SlotOccurrence:
    """The window occurrence that contains an instant."""
    local = instant.astimezone(_get_tz(tz_name))
    index = (local.hour * 60 + local.minute) // SLOT_MINUTES
    return SlotWindow(index).occurrence(local.date(), tz_name)


def occurrences_between(
    start: datetime,
    end: datetime,
    tz_name: str | None = None,
    slot_indexes: set[int] | None = None,
) -> list[SlotOccurrence]:
    """
    All window occurrences overlapping [start, end), ordered by start.

    Args:
        start: Range start (aware)
        end: Range end (aware)
        slot_indexes: Restrict to these windows (e.g. only held slots)
    """
    first_day = local_date(start, tz_name) - timedelta(days=1)
    last_day = local_date(end, tz_name) + timedelta(days=1)

    windows = all_windows()
    if slot_indexes is not None:
        windows = [w for w in windows if w.index in slot_indexes]

    found = []
    day = first_day
    while day <= last_day:
        for window in windows:
            occ = window.occurrence(day, tz_name)
            if occ.start < end and occ.end > start:
                found.append(occ)
        day += timedelta(days=1)

    found.sort(key=lambda occ: occ.start)
    return found
