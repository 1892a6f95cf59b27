"""
Shared constants used across the engine.
"""

from datetime import timedelta

# Coverage is 48 contiguous half-hour windows per day
SLOT_MINUTES = 30
SLOTS_PER_DAY = 24 * 60 // SLOT_MINUTES

# Provider rule: free-form messages only within 24h of the recipient's last message
FREE_FORM_WINDOW = timedelta(hours=24)

# Lead times the REMIND keyword accepts
MIN_LEAD_MINUTES = 5
MAX_LEAD_MINUTES = 120

DEFAULT_LEAD_MINUTES = 30
MAX_PAUSE_DAYS = 30
