"""Query layer for database operations using SQLAlchemy Core."""

from .assignments import (
    get_live_assignment,
    get_live_assignment_for_slot,
    list_live_assignments,
)
from .attendance import insert_missed, upsert_attended
from .dispatch import claim_dispatch, reclaim_dispatch
from .holders import get_holder, get_holder_by_phone

__all__ = [
    # Assignments
    "get_live_assignment",
    "get_live_assignment_for_slot",
    "list_live_assignments",
    # Attendance
    "upsert_attended",
    "insert_missed",
    # Dispatch
    "claim_dispatch",
    "reclaim_dispatch",
    # Holders
    "get_holder",
    "get_holder_by_phone",
]
