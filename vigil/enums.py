"""SQLAlchemy enum definitions for the database schema."""

import enum

from sqlalchemy import Enum as SQLEnum


# =====================================================
# Python Enum Classes
# =====================================================


class AssignmentStatus(str, enum.Enum):
    active = "active"
    paused = "paused"
    released = "released"


class AttendanceOutcome(str, enum.Enum):
    attended = "attended"
    missed = "missed"


class ReconciliationStatus(str, enum.Enum):
    pending = "pending"
    reconciled = "reconciled"
    unavailable = "unavailable"


class ConsentStatus(str, enum.Enum):
    never_opted_in = "never_opted_in"
    opted_in = "opted_in"
    opted_out = "opted_out"


class ConsentCategory(str, enum.Enum):
    """Categories a recipient can toggle independently."""

    slot_reminders = "slot_reminders"
    daily_content = "daily_content"
    broadcast_updates = "broadcast_updates"


class DispatchCategory(str, enum.Enum):
    slot_reminder = "slot_reminder"
    missed_warning = "missed_warning"
    slot_released = "slot_released"
    daily_content = "daily_content"
    broadcast = "broadcast"

    @property
    def consent_category(self) -> ConsentCategory:
        return _DISPATCH_TO_CONSENT[self]


_DISPATCH_TO_CONSENT = {
    DispatchCategory.slot_reminder: ConsentCategory.slot_reminders,
    DispatchCategory.missed_warning: ConsentCategory.slot_reminders,
    DispatchCategory.slot_released: ConsentCategory.slot_reminders,
    DispatchCategory.daily_content: ConsentCategory.daily_content,
    DispatchCategory.broadcast: ConsentCategory.broadcast_updates,
}


class DispatchStatus(str, enum.Enum):
    pending = "pending"
    sent = "sent"
    retrying = "retrying"
    failed = "failed"


class SendMode(str, enum.Enum):
    free_form = "free_form"
    template = "template"


# =====================================================
# SQLAlchemy Enum Types
# Created by the initial migration (create_type=False here)
# =====================================================

assignment_status_enum = SQLEnum(
    AssignmentStatus, name="assignment_status", create_type=False, native_enum=True
)
attendance_outcome_enum = SQLEnum(
    AttendanceOutcome, name="attendance_outcome", create_type=False, native_enum=True
)
reconciliation_status_enum = SQLEnum(
    ReconciliationStatus,
    name="reconciliation_status",
    create_type=False,
    native_enum=True,
)
consent_status_enum = SQLEnum(
    ConsentStatus, name="consent_status", create_type=False, native_enum=True
)
dispatch_category_enum = SQLEnum(
    DispatchCategory, name="dispatch_category", create_type=False, native_enum=True
)
dispatch_status_enum = SQLEnum(
    DispatchStatus, name="dispatch_status", create_type=False, native_enum=True
)
send_mode_enum = SQLEnum(SendMode, name="send_mode", create_type=False, native_enum=True)
