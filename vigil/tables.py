"""SQLAlchemy Core table definitions for the database schema."""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    SmallInteger,
    Table,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import TIMESTAMP

from .enums import (
    assignment_status_enum,
    attendance_outcome_enum,
    consent_status_enum,
    dispatch_category_enum,
    dispatch_status_enum,
    reconciliation_status_enum,
    send_mode_enum,
)

# Naming convention for constraints (helps Alembic generate better names)
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}
metadata = MetaData(naming_convention=convention)


# =====================================================
# 1. HOLDERS
# =====================================================
# Projection of the external profile store. Email is the identifier the
# meeting provider reports for participants.
holders = Table(
    "holders",
    metadata,
    Column("holder_id", Integer, primary_key=True, autoincrement=True),
    Column("display_name", Text),
    Column("email", Text),
    Column("phone_number", Text),  # E.164, used by the messaging channel
    Column("timezone", Text),
    Column("is_admin", Boolean, server_default="false", nullable=False),
    Column("created_at", TIMESTAMP(timezone=True), server_default=func.now()),
    Column("updated_at", TIMESTAMP(timezone=True), server_default=func.now()),
    Index("idx_holders_email", "email"),
    Index("idx_holders_phone_number", "phone_number", unique=True),
)


# =====================================================
# 2. SLOTS
# =====================================================
# 48 fixed rows seeded by the initial migration.
slots = Table(
    "slots",
    metadata,
    Column("slot_index", SmallInteger, primary_key=True, autoincrement=False),
    Column("label", Text, nullable=False),  # "06:00–06:30"
    Column("is_available", Boolean, server_default="true", nullable=False),
    CheckConstraint("slot_index >= 0 AND slot_index < 48", name="slot_index_range"),
)


# =====================================================
# 3. ASSIGNMENTS
# =====================================================
assignments = Table(
    "assignments",
    metadata,
    Column("assignment_id", Integer, primary_key=True, autoincrement=True),
    Column(
        "holder_id",
        Integer,
        ForeignKey("holders.holder_id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column(
        "slot_index",
        SmallInteger,
        ForeignKey("slots.slot_index"),
        nullable=False,
    ),
    Column("status", assignment_status_enum, nullable=False, server_default="active"),
    Column("missed_count", Integer, nullable=False, server_default="0"),
    Column("last_attended_at", TIMESTAMP(timezone=True)),
    Column("released_at", TIMESTAMP(timezone=True)),
    Column("release_reason", Text),
    Column("created_at", TIMESTAMP(timezone=True), server_default=func.now()),
    Column("updated_at", TIMESTAMP(timezone=True), server_default=func.now()),
    CheckConstraint("missed_count >= 0", name="missed_count_non_negative"),
    # At most one live assignment per holder and per slot
    Index(
        "uq_assignments_live_holder",
        "holder_id",
        unique=True,
        postgresql_where=text("status IN ('active', 'paused')"),
    ),
    Index(
        "uq_assignments_live_slot",
        "slot_index",
        unique=True,
        postgresql_where=text("status IN ('active', 'paused')"),
    ),
    Index("idx_assignments_status", "status"),
)


# =====================================================
# 4. PAUSE_WINDOWS
# =====================================================
pause_windows = Table(
    "pause_windows",
    metadata,
    Column("pause_id", Integer, primary_key=True, autoincrement=True),
    Column(
        "holder_id",
        Integer,
        ForeignKey("holders.holder_id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("starts_at", TIMESTAMP(timezone=True), nullable=False),
    Column("ends_at", TIMESTAMP(timezone=True), nullable=False),
    Column("reason", Text),
    Column("created_at", TIMESTAMP(timezone=True), server_default=func.now()),
    CheckConstraint("starts_at < ends_at", name="pause_window_ordered"),
    Index("idx_pause_windows_holder_id", "holder_id", "starts_at"),
)


# =====================================================
# 5. ATTENDANCE_RECORDS
# =====================================================
attendance_records = Table(
    "attendance_records",
    metadata,
    Column("record_id", Integer, primary_key=True, autoincrement=True),
    Column(
        "holder_id",
        Integer,
        ForeignKey("holders.holder_id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column(
        "assignment_id",
        Integer,
        ForeignKey("assignments.assignment_id", ondelete="SET NULL"),
    ),
    Column("slot_index", SmallInteger, ForeignKey("slots.slot_index"), nullable=False),
    Column("attendance_date", Date, nullable=False),
    Column("outcome", attendance_outcome_enum, nullable=False),
    Column("joined_at", TIMESTAMP(timezone=True)),
    Column("left_at", TIMESTAMP(timezone=True)),
    Column("meeting_instance_id", Text),
    Column("created_at", TIMESTAMP(timezone=True), server_default=func.now()),
    Column("updated_at", TIMESTAMP(timezone=True), server_default=func.now()),
    UniqueConstraint(
        "holder_id", "attendance_date", name="attendance_records_holder_date_unique"
    ),
    CheckConstraint(
        "outcome = 'missed' OR (joined_at IS NOT NULL AND left_at IS NOT NULL)",
        name="attended_has_timestamps",
    ),
    Index("idx_attendance_records_date", "attendance_date"),
)


# =====================================================
# 6. RECONCILIATION_WINDOWS
# =====================================================
# One checkpoint per slot occurrence so that "checked, nobody came" is
# distinguishable from "provider could not answer".
reconciliation_windows = Table(
    "reconciliation_windows",
    metadata,
    Column("window_id", Integer, primary_key=True, autoincrement=True),
    Column("slot_index", SmallInteger, ForeignKey("slots.slot_index"), nullable=False),
    Column("window_date", Date, nullable=False),
    Column(
        "status", reconciliation_status_enum, nullable=False, server_default="pending"
    ),
    Column("attempts", Integer, nullable=False, server_default="0"),
    Column("last_checked_at", TIMESTAMP(timezone=True)),
    Column("last_error", Text),
    UniqueConstraint(
        "slot_index", "window_date", name="reconciliation_windows_slot_date_unique"
    ),
)


# =====================================================
# 7. REMINDER_PREFERENCES
# =====================================================
reminder_preferences = Table(
    "reminder_preferences",
    metadata,
    Column(
        "holder_id",
        Integer,
        ForeignKey("holders.holder_id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column("enabled", Boolean, nullable=False, server_default="true"),
    Column("lead_minutes", Integer, nullable=False, server_default="30"),
    Column("timezone", Text),
    Column("quiet_start", Text),  # local "HH:MM"
    Column("quiet_end", Text),
    Column("slot_reminders", Boolean, nullable=False, server_default="true"),
    Column("daily_content", Boolean, nullable=False, server_default="true"),
    Column("broadcast_updates", Boolean, nullable=False, server_default="true"),
    Column("updated_at", TIMESTAMP(timezone=True), server_default=func.now()),
    CheckConstraint(
        "lead_minutes >= 0 AND lead_minutes <= 1440", name="lead_minutes_range"
    ),
)


# =====================================================
# 8. COMPLIANCE_STATES
# =====================================================
compliance_states = Table(
    "compliance_states",
    metadata,
    Column(
        "holder_id",
        Integer,
        ForeignKey("holders.holder_id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column("status", consent_status_enum, nullable=False, server_default="never_opted_in"),
    Column("opted_in_at", TIMESTAMP(timezone=True)),
    Column("opt_in_method", Text),  # "keyword", "web_form", "admin"
    Column("opted_out_at", TIMESTAMP(timezone=True)),
    Column("last_inbound_message_at", TIMESTAMP(timezone=True)),
    Column("slot_reminders", Boolean, nullable=False, server_default="true"),
    Column("daily_content", Boolean, nullable=False, server_default="true"),
    Column("broadcast_updates", Boolean, nullable=False, server_default="true"),
    Column("updated_at", TIMESTAMP(timezone=True), server_default=func.now()),
)


# =====================================================
# 9. DISPATCH_LOG
# =====================================================
# The unique key is the only guard against duplicate sends across
# scheduler instances: whoever inserts the row owns the send.
dispatch_log = Table(
    "dispatch_log",
    metadata,
    Column("dispatch_id", Integer, primary_key=True, autoincrement=True),
    Column(
        "holder_id",
        Integer,
        ForeignKey("holders.holder_id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("category", dispatch_category_enum, nullable=False),
    Column("logical_key", Text, nullable=False),
    Column("message_type", Text, nullable=False),
    Column("status", dispatch_status_enum, nullable=False, server_default="pending"),
    Column("send_mode", send_mode_enum),
    Column("retry_count", Integer, nullable=False, server_default="0"),
    Column("error_message", Text),
    Column("claimed_at", TIMESTAMP(timezone=True), server_default=func.now()),
    Column("sent_at", TIMESTAMP(timezone=True)),
    Column("created_at", TIMESTAMP(timezone=True), server_default=func.now()),
    UniqueConstraint(
        "holder_id", "category", "logical_key", name="dispatch_log_dedupe_unique"
    ),
    Index("idx_dispatch_log_status", "status"),
    Index("idx_dispatch_log_created_at", "created_at"),
)
