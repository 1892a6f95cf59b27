"""Read model for the reminder scheduler."""

from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncConnection

from ..enums import AssignmentStatus
from ..tables import assignments, holders, reminder_preferences


async def list_reminder_candidates(conn: AsyncConnection) -> list[dict[str, Any]]:
    """
    Active assignments with the holder's reminder preferences.

    Paused assignments get no reminders. Holders without a preferences row
    come back with NULL preference columns; the scheduler applies defaults.
    """
    query = (
        select(
            assignments.c.assignment_id,
            assignments.c.holder_id,
            assignments.c.slot_index,
            holders.c.display_name,
            holders.c.phone_number,
            holders.c.timezone.label("holder_timezone"),
            reminder_preferences.c.enabled,
            reminder_preferences.c.lead_minutes,
            reminder_preferences.c.timezone.label("preference_timezone"),
            reminder_preferences.c.quiet_start,
            reminder_preferences.c.quiet_end,
            reminder_preferences.c.slot_reminders,
        )
        .join(holders, holders.c.holder_id == assignments.c.holder_id)
        .outerjoin(
            reminder_preferences,
            reminder_preferences.c.holder_id == assignments.c.holder_id,
        )
        .where(assignments.c.status == AssignmentStatus.active)
        .order_by(assignments.c.slot_index)
    )
    result = await conn.execute(query)
    return [dict(row) for row in result.mappings()]
