"""Meeting provider integration (Zoom)."""

from .client import MeetingProviderError, ZoomClient, get_client, is_provider_configured
from .roster import (
    ParticipantSegment,
    Roster,
    RosterAvailable,
    RosterUnavailable,
    fetch_roster,
)

__all__ = [
    "MeetingProviderError",
    "ZoomClient",
    "get_client",
    "is_provider_configured",
    "ParticipantSegment",
    "Roster",
    "RosterAvailable",
    "RosterUnavailable",
    "fetch_roster",
]
