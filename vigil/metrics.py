"""Attendance summaries for holder and admin views."""

from dataclasses import dataclass, asdict
from datetime import date

from .database import get_connection
from .enums import AttendanceOutcome
from .queries.attendance import get_attendance_for_holder


@dataclass
class AttendanceSummary:
    attended: int
    missed: int
    rate: float | None
    current_streak: int
    longest_streak: int
    last_attended_on: date | None

    def to_dict(self) -> dict:
        return asdict(self)


def summarize_attendance(records: list[dict]) -> AttendanceSummary:
    """
    Summarize a holder's attendance records.

    Streaks count consecutive attended records in date order. Days without
    a record (paused, or before the holder claimed) do not break a streak.
    """
    ordered = sorted(records, key=lambda r: r["attendance_date"])

    attended = missed = 0
    run = longest = 0
    last_attended_on = None
    for record in ordered:
        if record["outcome"] == AttendanceOutcome.attended:
            attended += 1
            run += 1
            longest = max(longest, run)
            last_attended_on = record["attendance_date"]
        else:
            missed += 1
            run = 0

    total = attended + missed
    return AttendanceSummary(
        attended=attended,
        missed=missed,
        rate=round(attended / total, 3) if total else None,
        current_streak=run,
        longest_streak=longest,
        last_attended_on=last_attended_on,
    )


async def get_attendance_summary(holder_id: int) -> AttendanceSummary:
    async with get_connection() as conn:
        records = await get_attendance_for_holder(conn, holder_id)
    return summarize_attendance(records)
