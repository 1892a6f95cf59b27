"""Initial schema for slot coverage.

Revision ID: 001
Revises:
Create Date: 2026-10-18

Creates the enums, the nine tables and the partial unique indexes that
keep at most one live assignment per holder and per slot, then seeds the
48 half-hour slots.
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


ENUMS = {
    "assignment_status": ("active", "paused", "released"),
    "attendance_outcome": ("attended", "missed"),
    "reconciliation_status": ("pending", "reconciled", "unavailable"),
    "consent_status": ("never_opted_in", "opted_in", "opted_out"),
    "dispatch_category": (
        "slot_reminder",
        "missed_warning",
        "slot_released",
        "daily_content",
        "broadcast",
    ),
    "dispatch_status": ("pending", "sent", "retrying", "failed"),
    "send_mode": ("free_form", "template"),
}

LIVE = sa.text("status IN ('active', 'paused')")


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def _timestamps(*names: str) -> list[sa.Column]:
    return [
        sa.Column(
            name,
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.text("now()"),
            nullable=True,
        )
        for name in names
    ]


def _slot_label(index: int) -> str:
    start = index * 30
    end = (start + 30) % (24 * 60)
    return f"{start // 60:02d}:{start % 60:02d}–{end // 60:02d}:{end % 60:02d}"


def upgrade() -> None:
    bind = op.get_bind()
    for name, values in ENUMS.items():
        postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    op.create_table(
        "holders",
        sa.Column("holder_id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("display_name", sa.Text(), nullable=True),
        sa.Column("email", sa.Text(), nullable=True),
        sa.Column("phone_number", sa.Text(), nullable=True),
        sa.Column("timezone", sa.Text(), nullable=True),
        sa.Column("is_admin", sa.Boolean(), server_default="false", nullable=False),
        *_timestamps("created_at", "updated_at"),
        sa.PrimaryKeyConstraint("holder_id", name=op.f("pk_holders")),
    )
    op.create_index("idx_holders_email", "holders", ["email"], unique=False)
    op.create_index("idx_holders_phone_number", "holders", ["phone_number"], unique=True)

    slots_table = op.create_table(
        "slots",
        sa.Column("slot_index", sa.SmallInteger(), autoincrement=False, nullable=False),
        sa.Column("label", sa.Text(), nullable=False),
        sa.Column("is_available", sa.Boolean(), server_default="true", nullable=False),
        sa.CheckConstraint(
            "slot_index >= 0 AND slot_index < 48", name=op.f("ck_slots_slot_index_range")
        ),
        sa.PrimaryKeyConstraint("slot_index", name=op.f("pk_slots")),
    )

    op.create_table(
        "assignments",
        sa.Column("assignment_id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("holder_id", sa.Integer(), nullable=False),
        sa.Column("slot_index", sa.SmallInteger(), nullable=False),
        sa.Column(
            "status", _enum("assignment_status"), server_default="active", nullable=False
        ),
        sa.Column("missed_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("last_attended_at", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("released_at", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("release_reason", sa.Text(), nullable=True),
        *_timestamps("created_at", "updated_at"),
        sa.CheckConstraint(
            "missed_count >= 0", name=op.f("ck_assignments_missed_count_non_negative")
        ),
        sa.ForeignKeyConstraint(
            ["holder_id"],
            ["holders.holder_id"],
            name=op.f("fk_assignments_holder_id_holders"),
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["slot_index"],
            ["slots.slot_index"],
            name=op.f("fk_assignments_slot_index_slots"),
        ),
        sa.PrimaryKeyConstraint("assignment_id", name=op.f("pk_assignments")),
    )
    op.create_index(
        "uq_assignments_live_holder",
        "assignments",
        ["holder_id"],
        unique=True,
        postgresql_where=LIVE,
    )
    op.create_index(
        "uq_assignments_live_slot",
        "assignments",
        ["slot_index"],
        unique=True,
        postgresql_where=LIVE,
    )
    op.create_index("idx_assignments_status", "assignments", ["status"], unique=False)

    op.create_table(
        "pause_windows",
        sa.Column("pause_id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("holder_id", sa.Integer(), nullable=False),
        sa.Column("starts_at", postgresql.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("ends_at", postgresql.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        *_timestamps("created_at"),
        sa.CheckConstraint(
            "starts_at < ends_at", name=op.f("ck_pause_windows_pause_window_ordered")
        ),
        sa.ForeignKeyConstraint(
            ["holder_id"],
            ["holders.holder_id"],
            name=op.f("fk_pause_windows_holder_id_holders"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("pause_id", name=op.f("pk_pause_windows")),
    )
    op.create_index(
        "idx_pause_windows_holder_id",
        "pause_windows",
        ["holder_id", "starts_at"],
        unique=False,
    )

    op.create_table(
        "attendance_records",
        sa.Column("record_id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("holder_id", sa.Integer(), nullable=False),
        sa.Column("assignment_id", sa.Integer(), nullable=True),
        sa.Column("slot_index", sa.SmallInteger(), nullable=False),
        sa.Column("attendance_date", sa.Date(), nullable=False),
        sa.Column("outcome", _enum("attendance_outcome"), nullable=False),
        sa.Column("joined_at", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("left_at", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("meeting_instance_id", sa.Text(), nullable=True),
        *_timestamps("created_at", "updated_at"),
        sa.CheckConstraint(
            "outcome = 'missed' OR (joined_at IS NOT NULL AND left_at IS NOT NULL)",
            name=op.f("ck_attendance_records_attended_has_timestamps"),
        ),
        sa.ForeignKeyConstraint(
            ["holder_id"],
            ["holders.holder_id"],
            name=op.f("fk_attendance_records_holder_id_holders"),
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["assignment_id"],
            ["assignments.assignment_id"],
            name=op.f("fk_attendance_records_assignment_id_assignments"),
            ondelete="SET NULL",
        ),
        sa.ForeignKeyConstraint(
            ["slot_index"],
            ["slots.slot_index"],
            name=op.f("fk_attendance_records_slot_index_slots"),
        ),
        sa.PrimaryKeyConstraint("record_id", name=op.f("pk_attendance_records")),
        sa.UniqueConstraint(
            "holder_id", "attendance_date", name="attendance_records_holder_date_unique"
        ),
    )
    op.create_index(
        "idx_attendance_records_date", "attendance_records", ["attendance_date"], unique=False
    )

    op.create_table(
        "reconciliation_windows",
        sa.Column("window_id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("slot_index", sa.SmallInteger(), nullable=False),
        sa.Column("window_date", sa.Date(), nullable=False),
        sa.Column(
            "status",
            _enum("reconciliation_status"),
            server_default="pending",
            nullable=False,
        ),
        sa.Column("attempts", sa.Integer(), server_default="0", nullable=False),
        sa.Column("last_checked_at", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(
            ["slot_index"],
            ["slots.slot_index"],
            name=op.f("fk_reconciliation_windows_slot_index_slots"),
        ),
        sa.PrimaryKeyConstraint("window_id", name=op.f("pk_reconciliation_windows")),
        sa.UniqueConstraint(
            "slot_index", "window_date", name="reconciliation_windows_slot_date_unique"
        ),
    )

    op.create_table(
        "reminder_preferences",
        sa.Column("holder_id", sa.Integer(), nullable=False),
        sa.Column("enabled", sa.Boolean(), server_default="true", nullable=False),
        sa.Column("lead_minutes", sa.Integer(), server_default="30", nullable=False),
        sa.Column("timezone", sa.Text(), nullable=True),
        sa.Column("quiet_start", sa.Text(), nullable=True),
        sa.Column("quiet_end", sa.Text(), nullable=True),
        sa.Column("slot_reminders", sa.Boolean(), server_default="true", nullable=False),
        sa.Column("daily_content", sa.Boolean(), server_default="true", nullable=False),
        sa.Column("broadcast_updates", sa.Boolean(), server_default="true", nullable=False),
        *_timestamps("updated_at"),
        sa.CheckConstraint(
            "lead_minutes >= 0 AND lead_minutes <= 1440",
            name=op.f("ck_reminder_preferences_lead_minutes_range"),
        ),
        sa.ForeignKeyConstraint(
            ["holder_id"],
            ["holders.holder_id"],
            name=op.f("fk_reminder_preferences_holder_id_holders"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("holder_id", name=op.f("pk_reminder_preferences")),
    )

    op.create_table(
        "compliance_states",
        sa.Column("holder_id", sa.Integer(), nullable=False),
        sa.Column(
            "status",
            _enum("consent_status"),
            server_default="never_opted_in",
            nullable=False,
        ),
        sa.Column("opted_in_at", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("opt_in_method", sa.Text(), nullable=True),
        sa.Column("opted_out_at", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.Column(
            "last_inbound_message_at", postgresql.TIMESTAMP(timezone=True), nullable=True
        ),
        sa.Column("slot_reminders", sa.Boolean(), server_default="true", nullable=False),
        sa.Column("daily_content", sa.Boolean(), server_default="true", nullable=False),
        sa.Column("broadcast_updates", sa.Boolean(), server_default="true", nullable=False),
        *_timestamps("updated_at"),
        sa.ForeignKeyConstraint(
            ["holder_id"],
            ["holders.holder_id"],
            name=op.f("fk_compliance_states_holder_id_holders"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("holder_id", name=op.f("pk_compliance_states")),
    )

    op.create_table(
        "dispatch_log",
        sa.Column("dispatch_id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("holder_id", sa.Integer(), nullable=False),
        sa.Column("category", _enum("dispatch_category"), nullable=False),
        sa.Column("logical_key", sa.Text(), nullable=False),
        sa.Column("message_type", sa.Text(), nullable=False),
        sa.Column(
            "status", _enum("dispatch_status"), server_default="pending", nullable=False
        ),
        sa.Column("send_mode", _enum("send_mode"), nullable=True),
        sa.Column("retry_count", sa.Integer(), server_default="0", nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
        *_timestamps("claimed_at"),
        sa.Column("sent_at", postgresql.TIMESTAMP(timezone=True), nullable=True),
        *_timestamps("created_at"),
        sa.ForeignKeyConstraint(
            ["holder_id"],
            ["holders.holder_id"],
            name=op.f("fk_dispatch_log_holder_id_holders"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("dispatch_id", name=op.f("pk_dispatch_log")),
        sa.UniqueConstraint(
            "holder_id", "category", "logical_key", name="dispatch_log_dedupe_unique"
        ),
    )
    op.create_index("idx_dispatch_log_status", "dispatch_log", ["status"], unique=False)
    op.create_index(
        "idx_dispatch_log_created_at", "dispatch_log", ["created_at"], unique=False
    )

    op.bulk_insert(
        slots_table,
        [
            {"slot_index": index, "label": _slot_label(index), "is_available": True}
            for index in range(48)
        ],
    )


def downgrade() -> None:
    for table in (
        "dispatch_log",
        "compliance_states",
        "reminder_preferences",
        "reconciliation_windows",
        "attendance_records",
        "pause_windows",
        "assignments",
        "slots",
        "holders",
    ):
        op.drop_table(table)

    bind = op.get_bind()
    for name in reversed(list(ENUMS)):
        postgresql.ENUM(name=name).drop(bind, checkfirst=True)
