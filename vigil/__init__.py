"""
Core business logic for slot coverage - platform-agnostic.
Used by the web API, the background scheduler and the scripts.
"""

# Database (SQLAlchemy)
from .database import get_connection, get_transaction, get_engine, close_engine, is_configured

# Slot catalog
from .slots import SlotWindow, SlotOccurrence, get_window, all_windows, parse_label

# Validation errors
from .errors import (
    VigilValidationError, SlotNotFoundError, SlotAlreadyHeldError,
    HolderAlreadyAssignedError, NotAssignedError, InvalidPauseWindowError,
    OverlappingPauseError, InvalidTransitionError,
)

# Slot registry (async functions - must be awaited)
from .registry import (
    claim_slot, release_slot, transfer_slot, force_release, reset_missed_count,
    list_active, list_slots, get_assignment_status,
)

# Pause windows
from .pauses import request_pause, is_paused, covers, sweep_pause_states

# Lifecycle state machine
from .lifecycle import (
    Active, Paused, Released, transition, apply_event, TransitionResult,
    handle_release,
)

# Attendance
from .reconciler import run_live_poll, run_catch_up, match_holder
from .metrics import AttendanceSummary, summarize_attendance

__all__ = [
    # Database
    "get_connection",
    "get_transaction",
    "get_engine",
    "close_engine",
    "is_configured",
    # Slots
    "SlotWindow",
    "SlotOccurrence",
    "get_window",
    "all_windows",
    "parse_label",
    # Errors
    "VigilValidationError",
    "SlotNotFoundError",
    "SlotAlreadyHeldError",
    "HolderAlreadyAssignedError",
    "NotAssignedError",
    "InvalidPauseWindowError",
    "OverlappingPauseError",
    "InvalidTransitionError",
    # Registry
    "claim_slot",
    "release_slot",
    "transfer_slot",
    "force_release",
    "reset_missed_count",
    "list_active",
    "list_slots",
    "get_assignment_status",
    # Pauses
    "request_pause",
    "is_paused",
    "covers",
    "sweep_pause_states",
    # Lifecycle
    "Active",
    "Paused",
    "Released",
    "transition",
    "apply_event",
    "TransitionResult",
    "handle_release",
    # Attendance
    "run_live_poll",
    "run_catch_up",
    "match_holder",
    "AttendanceSummary",
    "summarize_attendance",
]
