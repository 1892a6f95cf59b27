"""
Slot catalog and holder slot routes.

Endpoints:
- GET /api/slots - The 48 windows with availability
- POST /api/slots/{slot_index}/claim - Claim a free slot
- POST /api/slots/transfer - Move to another free slot
- POST /api/slots/release - Give up the current slot
"""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from vigil.errors import VigilValidationError
from vigil.registry import claim_slot, list_slots, release_slot, transfer_slot
from vigil_api.auth import get_current_holder
from vigil_api.serializers import serialize_assignment

router = APIRouter(prefix="/api/slots", tags=["slots"])


class TransferRequest(BaseModel):
    slot_index: int


@router.get("")
async def get_slots(holder: dict = Depends(get_current_holder)) -> dict[str, Any]:
    """List all 48 slots. Other holders are shown by display name only."""
    rows = await list_slots()
    return {
        "slots": [
            {
                "slot_index": row["slot_index"],
                "label": row["label"],
                "is_available": row["is_available"],
                "held_by_me": row["holder_id"] == holder["holder_id"],
                "holder_name": row["display_name"] if row["holder_id"] else None,
            }
            for row in rows
        ]
    }


@router.post("/{slot_index}/claim")
async def claim(
    slot_index: int,
    holder: dict = Depends(get_current_holder),
) -> dict[str, Any]:
    try:
        assignment = await claim_slot(holder["holder_id"], slot_index)
    except VigilValidationError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))

    return {"status": "claimed", "assignment": serialize_assignment(assignment)}


@router.post("/transfer")
async def transfer(
    request: TransferRequest,
    holder: dict = Depends(get_current_holder),
) -> dict[str, Any]:
    try:
        assignment = await transfer_slot(holder["holder_id"], request.slot_index)
    except VigilValidationError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))

    return {"status": "transferred", "assignment": serialize_assignment(assignment)}


@router.post("/release")
async def release(holder: dict = Depends(get_current_holder)) -> dict[str, Any]:
    try:
        result = await release_slot(holder["holder_id"])
    except VigilValidationError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))

    return {
        "status": "released",
        "assignment_id": result.assignment_id,
        "slot_index": result.slot_index,
    }
