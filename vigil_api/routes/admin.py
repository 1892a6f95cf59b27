"""
Admin API routes.

All endpoints require admin authentication.

Endpoints:
- GET /api/admin/assignments - List assignments, optionally by status
- GET /api/admin/attendance - Attendance records for a date range
- GET /api/admin/dispatches - Dispatch log, filterable
- GET /api/admin/reconciliation-windows - Reconciliation checkpoints
- POST /api/admin/holders/{holder_id}/force-release - Release a holder's slot
- POST /api/admin/holders/{holder_id}/reset-missed - Clear consecutive misses
- POST /api/admin/reconcile - Run a reconciliation pass now
- POST /api/admin/broadcasts - Send an update to all live holders
"""

from datetime import date, datetime, timedelta, timezone
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from vigil.database import get_connection
from vigil.enums import (
    AssignmentStatus,
    DispatchCategory,
    DispatchStatus,
    ReconciliationStatus,
)
from vigil.errors import VigilValidationError
from vigil.metrics import summarize_attendance
from vigil.notifications.actions import send_broadcast
from vigil.queries.assignments import list_assignments
from vigil.queries.attendance import list_attendance, list_windows
from vigil.queries.dispatch import list_dispatches
from vigil.reconciler import run_catch_up, run_live_poll
from vigil.registry import force_release, list_active, reset_missed_count
from vigil_api.auth import require_admin
from vigil_api.serializers import serialize_assignment

router = APIRouter(prefix="/api/admin", tags=["admin"])


class ReconcileRequest(BaseModel):
    """Request body for a manual reconciliation run."""

    catch_up: bool = False


class BroadcastRequest(BaseModel):
    """Request body for an admin update."""

    update_key: str = Field(min_length=1, max_length=100)
    title: str = Field(min_length=1)
    body: str = Field(min_length=1)


@router.get("/assignments")
async def get_assignments(
    status: AssignmentStatus | None = None,
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    admin: dict = Depends(require_admin),
) -> dict[str, Any]:
    async with get_connection() as conn:
        rows = await list_assignments(conn, status=status, limit=limit, offset=offset)

    return {
        "assignments": [
            {**serialize_assignment(row), "display_name": row.get("display_name")}
            for row in rows
        ]
    }


@router.get("/attendance")
async def get_attendance(
    since: date | None = None,
    until: date | None = None,
    holder_id: int | None = None,
    admin: dict = Depends(require_admin),
) -> dict[str, Any]:
    """
    Attendance records between two dates (inclusive).

    Defaults to the last 7 days. When filtered to one holder, the response
    also carries their attendance summary.
    """
    until = until or datetime.now(timezone.utc).date()
    since = since or until - timedelta(days=7)
    if since > until:
        raise HTTPException(status_code=422, detail="since must not be after until")

    async with get_connection() as conn:
        records = await list_attendance(conn, since, until, holder_id=holder_id)

    response: dict[str, Any] = {"since": since, "until": until, "records": records}
    if holder_id is not None:
        response["summary"] = summarize_attendance(records).to_dict()
    return response


@router.get("/dispatches")
async def get_dispatches(
    status: DispatchStatus | None = None,
    category: DispatchCategory | None = None,
    holder_id: int | None = None,
    limit: int = Query(default=100, ge=1, le=500),
    admin: dict = Depends(require_admin),
) -> dict[str, Any]:
    async with get_connection() as conn:
        rows = await list_dispatches(
            conn, status=status, category=category, holder_id=holder_id, limit=limit
        )
    return {"dispatches": rows}


@router.get("/reconciliation-windows")
async def get_reconciliation_windows(
    status: ReconciliationStatus | None = None,
    limit: int = Query(default=100, ge=1, le=500),
    admin: dict = Depends(require_admin),
) -> dict[str, Any]:
    async with get_connection() as conn:
        rows = await list_windows(conn, status=status, limit=limit)
    return {"windows": rows}


@router.post("/holders/{holder_id}/force-release")
async def force_release_endpoint(
    holder_id: int,
    admin: dict = Depends(require_admin),
) -> dict[str, Any]:
    try:
        result = await force_release(holder_id)
    except VigilValidationError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))

    return {
        "status": "released",
        "assignment_id": result.assignment_id,
        "slot_index": result.slot_index,
    }


@router.post("/holders/{holder_id}/reset-missed")
async def reset_missed_endpoint(
    holder_id: int,
    admin: dict = Depends(require_admin),
) -> dict[str, Any]:
    try:
        result = await reset_missed_count(holder_id)
    except VigilValidationError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))

    return {
        "status": "reset",
        "assignment_id": result.assignment_id,
        "missed_count": result.missed_count,
    }


@router.post("/reconcile")
async def reconcile_endpoint(
    request: ReconcileRequest | None = None,
    admin: dict = Depends(require_admin),
) -> dict[str, Any]:
    """Run the live poll (or the catch-up sweep) immediately."""
    if request and request.catch_up:
        stats = await run_catch_up()
    else:
        stats = await run_live_poll()
    return {"status": "completed", "stats": stats}


@router.post("/broadcasts")
async def broadcast_endpoint(
    request: BroadcastRequest,
    admin: dict = Depends(require_admin),
) -> dict[str, Any]:
    live = await list_active()
    holder_ids = sorted({row["holder_id"] for row in live})
    counts = await send_broadcast(request.update_key, request.title, request.body, holder_ids)
    return {"status": "sent", "recipients": len(holder_ids), "outcomes": counts}
