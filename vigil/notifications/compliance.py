"""
Messaging compliance: consent, per-category toggles and the 24-hour window.

Consent is NeverOptedIn, OptedIn or OptedOut. Nothing automated goes out
unless the recipient is OptedIn and the message's category is enabled.
Within 24 hours of the recipient's last inbound message any text may be
sent; outside it only pre-approved templates.

Inbound messages are handled here first: the inbound timestamp and any
control keyword are committed together before anything else looks at the
message, so a send attempted right afterwards sees the new state.
"""

import logging
import re
from dataclasses import dataclass, replace
from datetime import datetime, timezone

from ..constants import FREE_FORM_WINDOW, MAX_LEAD_MINUTES, MIN_LEAD_MINUTES
from ..database import get_transaction
from ..enums import ConsentCategory, ConsentStatus, SendMode
from ..queries.compliance import get_compliance_state, save_compliance_state
from ..queries.holders import get_holder_by_phone
from ..queries.preferences import upsert_reminder_preference

logger = logging.getLogger(__name__)


# =============================================================================
# State
# =============================================================================


@dataclass(frozen=True)
class NeverOptedIn:
    pass


@dataclass(frozen=True)
class OptedIn:
    at: datetime | None = None
    method: str | None = None


@dataclass(frozen=True)
class OptedOut:
    at: datetime | None = None


Consent = NeverOptedIn | OptedIn | OptedOut


@dataclass(frozen=True)
class ComplianceState:
    consent: Consent = NeverOptedIn()
    slot_reminders: bool = True
    daily_content: bool = True
    broadcast_updates: bool = True
    last_inbound_message_at: datetime | None = None

    def category_enabled(self, category: ConsentCategory) -> bool:
        return getattr(self, category.value)


def compliance_from_row(row: dict | None) -> ComplianceState:
    if row is None:
        return ComplianceState()

    status = ConsentStatus(row["status"])
    if status == ConsentStatus.opted_in:
        consent = OptedIn(at=row.get("opted_in_at"), method=row.get("opt_in_method"))
    elif status == ConsentStatus.opted_out:
        consent = OptedOut(at=row.get("opted_out_at"))
    else:
        consent = NeverOptedIn()

    return ComplianceState(
        consent=consent,
        slot_reminders=row["slot_reminders"],
        daily_content=row["daily_content"],
        broadcast_updates=row["broadcast_updates"],
        last_inbound_message_at=row.get("last_inbound_message_at"),
    )


def compliance_to_values(state: ComplianceState) -> dict:
    values = {
        "slot_reminders": state.slot_reminders,
        "daily_content": state.daily_content,
        "broadcast_updates": state.broadcast_updates,
        "last_inbound_message_at": state.last_inbound_message_at,
    }
    match state.consent:
        case OptedIn(at=at, method=method):
            values.update(status=ConsentStatus.opted_in, opted_in_at=at, opt_in_method=method)
        case OptedOut(at=at):
            values.update(status=ConsentStatus.opted_out, opted_out_at=at)
        case NeverOptedIn():
            values.update(status=ConsentStatus.never_opted_in)
    return values


# =============================================================================
# Gate
# =============================================================================


@dataclass(frozen=True)
class Allowed:
    mode: SendMode


@dataclass(frozen=True)
class Blocked:
    reason: str


GateDecision = Allowed | Blocked


def send_mode_for(last_inbound_message_at: datetime | None, now: datetime) -> SendMode:
    if last_inbound_message_at is not None and now - last_inbound_message_at < FREE_FORM_WINDOW:
        return SendMode.free_form
    return SendMode.template


def check_gate(state: ComplianceState, category: ConsentCategory, now: datetime) -> GateDecision:
    """Decide whether an automated message may go out, and in which mode."""
    match state.consent:
        case NeverOptedIn():
            return Blocked("never opted in")
        case OptedOut():
            return Blocked("opted out")

    if not state.category_enabled(category):
        return Blocked(f"{category.value} disabled")

    return Allowed(send_mode_for(state.last_inbound_message_at, now))


def opt_in(state: ComplianceState, now: datetime, method: str) -> ComplianceState:
    return replace(state, consent=OptedIn(at=now, method=method))


def opt_out(state: ComplianceState, now: datetime) -> ComplianceState:
    return replace(state, consent=OptedOut(at=now))


# =============================================================================
# Control keywords
# =============================================================================

OPT_OUT_KEYWORDS = {"STOP", "UNSUBSCRIBE", "CANCEL", "OPT OUT", "OPTOUT"}
OPT_IN_KEYWORDS = {"START", "SUBSCRIBE", "UNSTOP", "OPT IN", "OPTIN"}
SETTINGS_KEYWORDS = {"SETTINGS", "STATUS"}

CATEGORY_KEYWORDS = {
    "REMIND": ConsentCategory.slot_reminders,
    "DEVOTIONALS": ConsentCategory.daily_content,
    "UPDATES": ConsentCategory.broadcast_updates,
}

CATEGORY_NAMES = {
    ConsentCategory.slot_reminders: "Slot reminders",
    ConsentCategory.daily_content: "Devotionals",
    ConsentCategory.broadcast_updates: "Updates",
}

_TOGGLE_RE = re.compile(r"^(REMIND|DEVOTIONALS|UPDATES)\s+(ON|OFF)$")
_LEAD_RE = re.compile(r"^REMIND\s+(\d{1,3})(?:\s*MIN(?:UTES?)?)?$")


@dataclass(frozen=True)
class ControlCommand:
    action: str  # "opt_out", "opt_in", "enable", "disable", "set_lead", "settings"
    category: ConsentCategory | None = None
    lead_minutes: int | None = None


def parse_control_keyword(text: str | None) -> ControlCommand | None:
    """
    Recognize a control keyword. Anything else is an ordinary message.

    "REMIND <n>" outside MIN_LEAD_MINUTES..MAX_LEAD_MINUTES is not a command.
    """
    if not text:
        return None
    normalized = " ".join(text.strip().upper().split())

    if normalized in OPT_OUT_KEYWORDS:
        return ControlCommand("opt_out")
    if normalized in OPT_IN_KEYWORDS:
        return ControlCommand("opt_in")
    if normalized in SETTINGS_KEYWORDS:
        return ControlCommand("settings")

    toggle = _TOGGLE_RE.match(normalized)
    if toggle:
        action = "enable" if toggle.group(2) == "ON" else "disable"
        return ControlCommand(action, category=CATEGORY_KEYWORDS[toggle.group(1)])

    lead = _LEAD_RE.match(normalized)
    if lead:
        minutes = int(lead.group(1))
        if MIN_LEAD_MINUTES <= minutes <= MAX_LEAD_MINUTES:
            return ControlCommand(
                "set_lead", category=ConsentCategory.slot_reminders, lead_minutes=minutes
            )
    return None


def apply_command(
    state: ComplianceState,
    command: ControlCommand,
    now: datetime,
) -> ComplianceState:
    """Apply a control command to the compliance state (settings is a no-op)."""
    match command.action:
        case "opt_out":
            return opt_out(state, now)
        case "opt_in":
            return opt_in(state, now, method="keyword")
        case "enable" | "set_lead":
            return replace(state, **{command.category.value: True})
        case "disable":
            return replace(state, **{command.category.value: False})
    return state


@dataclass(frozen=True)
class InboundResult:
    holder_id: int | None
    command: ControlCommand | None
    state: ComplianceState | None
    reminder_preference: dict | None = None

    @property
    def handled(self) -> bool:
        """True if the message was a control keyword and needs no further handling."""
        return self.command is not None


async def handle_inbound_message(
    phone_number: str,
    text: str | None,
    now: datetime | None = None,
) -> InboundResult:
    """
    Record an inbound message and apply any control keyword, in one transaction.

    Returns:
        InboundResult; holder_id is None for unknown senders
    """
    now = now or datetime.now(timezone.utc)
    command = parse_control_keyword(text)
    preference = None

    async with get_transaction() as conn:
        holder = await get_holder_by_phone(conn, phone_number)
        if not holder:
            logger.info(f"Inbound message from unknown number {phone_number}")
            return InboundResult(holder_id=None, command=command, state=None)

        holder_id = holder["holder_id"]
        row = await get_compliance_state(conn, holder_id, for_update=True)
        state = replace(compliance_from_row(row), last_inbound_message_at=now)

        if command is not None:
            state = apply_command(state, command, now)

        await save_compliance_state(conn, holder_id, **compliance_to_values(state))

        # Mirror category toggles into the holder's preferences
        if command is not None and command.category is not None:
            values = {command.category.value: command.action != "disable"}
            if command.category == ConsentCategory.slot_reminders and command.action != "disable":
                values["enabled"] = True
            if command.lead_minutes is not None:
                values["lead_minutes"] = command.lead_minutes
            preference = await upsert_reminder_preference(conn, holder_id, **values)

    if command is not None:
        logger.info(f"Holder {holder_id} sent control keyword: {command.action}")

    return InboundResult(
        holder_id=holder_id,
        command=command,
        state=state,
        reminder_preference=preference,
    )


async def record_opt_in(
    holder_id: int,
    method: str = "web_form",
    now: datetime | None = None,
) -> ComplianceState:
    """Opt a holder in from outside the messaging channel (web form, admin)."""
    now = now or datetime.now(timezone.utc)
    async with get_transaction() as conn:
        row = await get_compliance_state(conn, holder_id, for_update=True)
        state = opt_in(compliance_from_row(row), now, method=method)
        await save_compliance_state(conn, holder_id, **compliance_to_values(state))
    logger.info(f"Holder {holder_id} opted in via {method}")
    return state
