"""Response shaping for database rows."""

from vigil.slots import get_window

ASSIGNMENT_FIELDS = (
    "assignment_id",
    "holder_id",
    "slot_index",
    "status",
    "missed_count",
    "last_attended_at",
    "released_at",
    "release_reason",
    "created_at",
)


def serialize_assignment(row: dict | None) -> dict | None:
    if row is None:
        return None
    data = {key: row.get(key) for key in ASSIGNMENT_FIELDS}
    data["slot_label"] = get_window(row["slot_index"]).label
    return data


def serialize_pause(row: dict | None) -> dict | None:
    if row is None:
        return None
    return {
        "pause_id": row["pause_id"],
        "starts_at": row["starts_at"],
        "ends_at": row["ends_at"],
        "reason": row.get("reason"),
    }
