"""
Participant rosters for a time range of the coverage meeting.

Ended meeting instances come from the reports API; a meeting that is still
running is read from the live metrics API. The result distinguishes
"checked, these people were there" (possibly nobody) from "the provider
cannot say" so that a data gap is never recorded as an absence.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from ..config import get_meeting_id, get_provider_retention_days
from .client import ProviderNotFound, ZoomClient, encode_meeting_uuid, get_client

logger = logging.getLogger(__name__)

PAGE_SIZE = 300

# How far back a still-running instance may have started
LIVE_LOOKBACK = timedelta(hours=24)


@dataclass(frozen=True)
class ParticipantSegment:
    """One continuous stay of one participant in the meeting."""

    email: str | None
    name: str | None
    joined_at: datetime
    left_at: datetime
    instance_id: str | None = None


@dataclass(frozen=True)
class RosterAvailable:
    """
    Participants overlapping the requested range.

    gaps lists the (start, end) spans of ended instances whose report is not
    available yet; the provider cannot say who was there during them.
    """

    participants: list[ParticipantSegment] = field(default_factory=list)
    gaps: list[tuple[datetime, datetime]] = field(default_factory=list)

    def covers(self, start: datetime, end: datetime) -> bool:
        """Whether the roster can speak for all of [start, end)."""
        return not any(gap_start < end and gap_end > start for gap_start, gap_end in self.gaps)


@dataclass(frozen=True)
class RosterUnavailable:
    reason: str


Roster = RosterAvailable | RosterUnavailable


def parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_participant(
    raw: dict,
    instance_id: str | None,
    now: datetime,
) -> ParticipantSegment | None:
    """
    Build a segment from a report or live-metrics participant entry.

    Participants still in a live meeting have no leave time; they count as
    present until now. Entries without a join time are dropped.
    """
    joined_at = parse_timestamp(raw.get("join_time"))
    if joined_at is None:
        return None
    left_at = parse_timestamp(raw.get("leave_time")) or now

    email = raw.get("user_email") or raw.get("email") or None
    return ParticipantSegment(
        email=email.strip().lower() if email else None,
        name=raw.get("name") or raw.get("user_name"),
        joined_at=joined_at,
        left_at=max(left_at, joined_at),
        instance_id=instance_id,
    )


@dataclass(frozen=True)
class InstanceSpan:
    """An ended meeting instance, taken to last until the next one started."""

    uuid: str
    started_at: datetime
    until: datetime | None = None


def select_instances(instances: list[dict], start: datetime, end: datetime) -> list[InstanceSpan]:
    """
    Ended instances that may overlap [start, end).

    Instances only report a start time, so each one is assumed to run until
    the next one starts. The latest instance is open-ended.
    """
    dated = sorted(
        (
            (parse_timestamp(inst["start_time"]), inst["uuid"])
            for inst in instances
            if inst.get("start_time") and inst.get("uuid")
        ),
        key=lambda pair: pair[0],
    )
    spans = [
        InstanceSpan(uuid, started, dated[n + 1][0] if n + 1 < len(dated) else None)
        for n, (started, uuid) in enumerate(dated)
    ]
    return [
        span
        for span in spans
        if span.started_at < end and (span.until is None or span.until > start)
    ]


async def _paged(client: ZoomClient, path: str, key: str, params: dict | None = None) -> list[dict]:
    items = []
    params = {"page_size": PAGE_SIZE, **(params or {})}
    while True:
        data = await client.get(path, params=params)
        items.extend(data.get(key) or [])
        token = data.get("next_page_token")
        if not token:
            return items
        params = {**params, "next_page_token": token}


async def fetch_roster(
    meeting_id: str | None,
    start: datetime,
    end: datetime,
    now: datetime | None = None,
    client: ZoomClient | None = None,
) -> Roster:
    """
    Everyone who was in the coverage meeting at some point in [start, end).

    Returns:
        RosterAvailable with the overlapping segments (and the spans of
        ended instances whose report is missing), or RosterUnavailable when
        the provider is not configured, the range is past retention, or the
        meeting's instances cannot be listed

    Raises:
        MeetingProviderError: Transient failure; retry later
    """
    now = now or datetime.now(timezone.utc)
    client = client or get_client()
    meeting_id = meeting_id or get_meeting_id()

    if client is None or not meeting_id:
        return RosterUnavailable("meeting provider not configured")

    retention_start = now - timedelta(days=get_provider_retention_days())
    if start < retention_start:
        return RosterUnavailable("outside provider retention")

    try:
        instances = await _paged(client, f"/past_meetings/{meeting_id}/instances", "meetings")
    except ProviderNotFound:
        # Without the instance list nothing can be said about attendance
        logger.warning(f"No past instances found for meeting {meeting_id}")
        return RosterUnavailable("meeting instances not found")

    segments: list[ParticipantSegment] = []
    gaps: list[tuple[datetime, datetime]] = []
    for span in select_instances(instances, start, end):
        try:
            raw = await _paged(
                client,
                f"/report/meetings/{encode_meeting_uuid(span.uuid)}/participants",
                "participants",
            )
        except ProviderNotFound:
            logger.info(f"No participant report yet for meeting instance {span.uuid}")
            gaps.append((span.started_at, span.until or now))
            continue
        segments.extend(
            seg for seg in (parse_participant(r, span.uuid, now) for r in raw) if seg
        )

    if end > now - LIVE_LOOKBACK:
        try:
            raw = await _paged(
                client,
                f"/metrics/meetings/{meeting_id}/participants",
                "participants",
                params={"type": "live"},
            )
        except ProviderNotFound:
            # Meeting is not running right now
            raw = []
        segments.extend(
            seg for seg in (parse_participant(r, "live", now) for r in raw) if seg
        )

    overlapping = [s for s in segments if s.joined_at < end and s.left_at > start]
    return RosterAvailable(overlapping, gaps)
