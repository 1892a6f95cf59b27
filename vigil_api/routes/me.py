"""
Current holder routes.

Endpoints:
- GET /api/me/assignment - Slot, pause and attendance summary
- GET /api/me/pauses - Current and upcoming pause windows
- POST /api/me/pauses - Plan an absence
- PATCH /api/me/reminder-preferences - Update reminder settings
- POST /api/me/opt-in - Consent to WhatsApp messages from the web form
"""

from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, field_validator

from vigil.constants import DEFAULT_LEAD_MINUTES, MAX_LEAD_MINUTES, MIN_LEAD_MINUTES
from vigil.database import get_connection, get_transaction
from vigil.errors import VigilValidationError
from vigil.notifications.compliance import record_opt_in
from vigil.notifications.reminders import next_reminder_at
from vigil.enums import ConsentCategory
from vigil.pauses import list_pauses, request_pause
from vigil.queries.compliance import save_compliance_state
from vigil.queries.preferences import get_reminder_preference, upsert_reminder_preference
from vigil.registry import get_assignment_status
from vigil.timezone import is_valid_timezone, parse_hhmm
from vigil_api.auth import get_current_holder
from vigil_api.serializers import serialize_assignment, serialize_pause

router = APIRouter(prefix="/api/me", tags=["me"])

NULLABLE_PREFERENCE_FIELDS = {"timezone", "quiet_start", "quiet_end"}


class PauseRequest(BaseModel):
    starts_at: datetime
    ends_at: datetime
    reason: str | None = Field(default=None, max_length=500)


class ReminderPreferenceUpdate(BaseModel):
    """Only fields that are set are changed."""

    enabled: bool | None = None
    lead_minutes: int | None = Field(default=None, ge=MIN_LEAD_MINUTES, le=MAX_LEAD_MINUTES)
    timezone: str | None = None
    quiet_start: str | None = None
    quiet_end: str | None = None
    slot_reminders: bool | None = None
    daily_content: bool | None = None
    broadcast_updates: bool | None = None

    @field_validator("timezone")
    @classmethod
    def _check_timezone(cls, value: str | None) -> str | None:
        if value is not None and not is_valid_timezone(value):
            raise ValueError(f"Unknown timezone: {value}")
        return value

    @field_validator("quiet_start", "quiet_end")
    @classmethod
    def _check_hhmm(cls, value: str | None) -> str | None:
        if value is None or value == "":
            return value
        try:
            parsed = parse_hhmm(value)
        except ValueError:
            raise ValueError("Expected HH:MM")
        return parsed.strftime("%H:%M")


@router.get("/assignment")
async def get_my_assignment(holder: dict = Depends(get_current_holder)) -> dict[str, Any]:
    now = datetime.now(timezone.utc)
    status = await get_assignment_status(holder["holder_id"], now=now)
    assignment = status["assignment"]

    next_reminder = None
    if assignment:
        async with get_connection() as conn:
            preference = await get_reminder_preference(conn, holder["holder_id"])
        if preference is None or (preference["enabled"] and preference["slot_reminders"]):
            lead = preference["lead_minutes"] if preference else DEFAULT_LEAD_MINUTES
            next_reminder = next_reminder_at(assignment["slot_index"], lead, now)

    return {
        "assignment": serialize_assignment(assignment),
        "current_pause": serialize_pause(status["current_pause"]),
        "upcoming_pauses": [serialize_pause(p) for p in status["upcoming_pauses"]],
        "attendance": status["attendance"].to_dict(),
        "next_reminder_at": next_reminder,
    }


@router.get("/pauses")
async def get_my_pauses(holder: dict = Depends(get_current_holder)) -> dict[str, Any]:
    pauses = await list_pauses(holder["holder_id"])
    return {"pauses": [serialize_pause(p) for p in pauses]}


@router.post("/pauses")
async def create_my_pause(
    request: PauseRequest,
    holder: dict = Depends(get_current_holder),
) -> dict[str, Any]:
    try:
        pause = await request_pause(
            holder["holder_id"], request.starts_at, request.ends_at, reason=request.reason
        )
    except VigilValidationError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))

    return {"status": "created", "pause": serialize_pause(pause)}


@router.patch("/reminder-preferences")
async def update_my_reminder_preferences(
    updates: ReminderPreferenceUpdate,
    holder: dict = Depends(get_current_holder),
) -> dict[str, Any]:
    values = {
        key: value
        for key, value in updates.model_dump(exclude_unset=True).items()
        if value is not None or key in NULLABLE_PREFERENCE_FIELDS
    }
    # Empty strings clear quiet hours
    for key in ("quiet_start", "quiet_end"):
        if values.get(key) == "":
            values[key] = None

    if not values:
        raise HTTPException(status_code=400, detail="No fields to update")

    # The send gate reads category toggles from the compliance row
    toggles = {c.value: values[c.value] for c in ConsentCategory if c.value in values}

    async with get_transaction() as conn:
        preference = await upsert_reminder_preference(conn, holder["holder_id"], **values)
        if toggles:
            await save_compliance_state(conn, holder["holder_id"], **toggles)

    return {"status": "updated", "preferences": preference}


@router.post("/opt-in")
async def opt_in_to_messages(holder: dict = Depends(get_current_holder)) -> dict[str, Any]:
    if not holder.get("phone_number"):
        raise HTTPException(status_code=400, detail="Add a phone number first")
    await record_opt_in(holder["holder_id"], method="web_form")
    return {"status": "opted_in"}
