"""
Notification system for WhatsApp messages.

Public API:
    dispatch(holder_id, category, logical_key, message_type, context) - Send once
    run_reminder_scan(now) - One reminder tick
    handle_inbound_message(phone_number, text) - Consent and keywords
    init_scheduler() / shutdown_scheduler() - Background ticks

High-level actions:
    notify_missed_warning(...) - Final warning before release
    notify_slot_released(...) - Holder and admin release notices
    send_broadcast(...) - Admin updates
"""

from .actions import notify_missed_warning, notify_slot_released, send_broadcast
from .compliance import check_gate, handle_inbound_message
from .dispatcher import dispatch, was_dispatched
from .reminders import decide_reminder, run_reminder_scan
from .scheduler import init_scheduler, shutdown_scheduler

__all__ = [
    # Low-level
    "dispatch",
    "was_dispatched",
    "check_gate",
    "handle_inbound_message",
    "decide_reminder",
    "run_reminder_scan",
    "init_scheduler",
    "shutdown_scheduler",
    # High-level actions
    "notify_missed_warning",
    "notify_slot_released",
    "send_broadcast",
]
