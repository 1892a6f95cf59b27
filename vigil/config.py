"""
Centralized configuration for the slot coverage engine.

Every operational tuning knob is an environment variable with a default,
read at call time so tests can patch the environment.
"""

import os


def _int_env(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return int(value)


def is_dev_mode() -> bool:
    """Check if running in development mode (--dev flag or DEV_MODE env)."""
    return os.getenv("DEV_MODE", "").lower() in ("true", "1", "yes")


def is_scheduler_disabled() -> bool:
    """Background ticks can be switched off for API-only instances."""
    return os.getenv("DISABLE_SCHEDULER", "").lower() in ("true", "1", "yes")


def get_api_port() -> int:
    """Get API server port from env or default."""
    return _int_env("API_PORT", 8000)


# =============================================================================
# Slot lifecycle
# =============================================================================


def get_slot_timezone() -> str:
    """Timezone the 48 daily windows are defined in."""
    return os.getenv("SLOT_TIMEZONE", "UTC")


def get_miss_threshold() -> int:
    """Consecutive misses that release an assignment."""
    return max(1, _int_env("MISS_THRESHOLD", 3))


def get_miss_warning_at() -> int:
    """Miss count at which the holder gets a final warning before release."""
    threshold = get_miss_threshold()
    return max(1, _int_env("MISS_WARNING_AT", threshold - 1))


# =============================================================================
# Attendance reconciliation
# =============================================================================


def get_reconcile_interval_seconds() -> int:
    return _int_env("RECONCILE_INTERVAL_SECONDS", 120)


def get_reconcile_grace_minutes() -> int:
    """How long after a window ends the live poll keeps visiting it."""
    return _int_env("RECONCILE_GRACE_MINUTES", 30)


def get_catch_up_time_utc() -> tuple[int, int]:
    return _int_env("CATCH_UP_HOUR_UTC", 2), _int_env("CATCH_UP_MINUTE_UTC", 15)


def get_catch_up_lookback_days() -> int:
    return _int_env("CATCH_UP_LOOKBACK_DAYS", 2)


def get_min_overlap_minutes() -> int:
    return _int_env("ATTENDANCE_MIN_OVERLAP_MINUTES", 10)


def get_attendance_tolerance_minutes() -> int:
    return _int_env("ATTENDANCE_TOLERANCE_MINUTES", 5)


def get_attendance_settle_minutes() -> int:
    """Wait after a window ends before recording a miss (provider report lag)."""
    return _int_env("ATTENDANCE_SETTLE_MINUTES", 10)


def get_provider_retention_days() -> int:
    return _int_env("PROVIDER_RETENTION_DAYS", 365)


def get_provider_timeout_seconds() -> float:
    return float(_int_env("PROVIDER_TIMEOUT_SECONDS", 10))


def get_meeting_id() -> str | None:
    return os.getenv("ZOOM_MEETING_ID")


def get_meeting_join_url() -> str:
    """Link included in reminders."""
    return os.getenv("MEETING_JOIN_URL", "")


# =============================================================================
# Reminders and dispatch
# =============================================================================


def get_reminder_interval_seconds() -> int:
    """Length of one reminder scheduler tick."""
    return _int_env("REMINDER_INTERVAL_SECONDS", 60)


def get_pause_sweep_interval_seconds() -> int:
    return _int_env("PAUSE_SWEEP_INTERVAL_SECONDS", 300)


def get_dispatch_retry_cap() -> int:
    """Transient send attempts before a dispatch is marked failed."""
    return max(1, _int_env("DISPATCH_RETRY_CAP", 3))


def get_stale_dispatch_minutes() -> int:
    return _int_env("STALE_DISPATCH_MINUTES", 10)


def get_messaging_timeout_seconds() -> float:
    return float(_int_env("MESSAGING_TIMEOUT_SECONDS", 10))


# =============================================================================
# Database
# =============================================================================


def get_db_pool_size() -> int:
    return _int_env("DB_POOL_SIZE", 5)


def get_db_max_overflow() -> int:
    return _int_env("DB_MAX_OVERFLOW", 10)


def get_db_pool_recycle_seconds() -> int:
    """Connections older than this are replaced (poolers drop idle ones)."""
    return _int_env("DB_POOL_RECYCLE_SECONDS", 1800)


# Required environment variables for production
# Format: (name, description, required_in_dev)
REQUIRED_ENV_VARS = [
    ("DATABASE_URL", "PostgreSQL connection string", True),
    ("JWT_SECRET", "Secret key for JWT tokens", True),
    ("ZOOM_MEETING_ID", "Meeting that holders join for their slot", False),
    ("ZOOM_ACCOUNT_ID", "Zoom Server-to-Server OAuth account", False),
    ("ZOOM_CLIENT_ID", "Zoom Server-to-Server OAuth client id", False),
    ("ZOOM_CLIENT_SECRET", "Zoom Server-to-Server OAuth client secret", False),
    ("WHATSAPP_TOKEN", "WhatsApp Cloud API access token", False),
    ("WHATSAPP_PHONE_NUMBER_ID", "WhatsApp sender phone number id", False),
    ("WHATSAPP_APP_SECRET", "Secret for inbound webhook signatures", False),
    ("WHATSAPP_VERIFY_TOKEN", "Token for the webhook subscription handshake", False),
]


def check_required_env_vars() -> tuple[bool, list[str]]:
    """
    Check that required environment variables are set.

    Returns:
        (all_ok, warnings): Tuple of success flag and list of warning messages
    """
    warnings = []
    errors = []
    in_dev = is_dev_mode()

    for name, description, required_in_dev in REQUIRED_ENV_VARS:
        value = os.environ.get(name)

        if not value:
            if required_in_dev and not in_dev:
                errors.append(f"  ✗ {name}: Not set ({description})")
            else:
                warnings.append(f"  ⚠ {name}: Not set ({description})")

    if errors:
        return False, errors + warnings

    return True, warnings
