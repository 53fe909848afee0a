"""
Manual review queue and correction endpoints.
"""
from typing import Any

from fastapi import APIRouter, Body, HTTPException

from api.db import get_db
from api.routes.pipeline import contract_error
from hunter.errors import ContractViolation, MissingIdentifier, ReviewEntryNotFound
from hunter.review import ManualReviewService

router = APIRouter(prefix="/api", tags=["review"])


async def _service() -> ManualReviewService:
    return ManualReviewService(await get_db())


@router.get("/manual-review")
async def list_manual_review():
    """Entries waiting for a human, oldest first. Always a list."""
    service = await _service()
    return [entry.to_wire() for entry in await service.list_entries()]


@router.get("/manual-review/{entry_id}")
async def get_manual_review_entry(entry_id: str):
    service = await _service()
    try:
        entry = await service.get_entry(entry_id)
    except ReviewEntryNotFound:
        raise HTTPException(status_code=404, detail="Manual review entry not found")
    return entry.to_wire()


@router.post("/corrections", status_code=201)
async def submit_correction(payload: dict[str, Any] = Body(...)):
    """Record a corrected analysis and remove its review entry."""
    service = await _service()
    try:
        correction = await service.submit_correction(payload)
    except MissingIdentifier as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ReviewEntryNotFound:
        raise HTTPException(status_code=404, detail="Manual review entry not found")
    except ContractViolation as e:
        raise contract_error(e)
    return correction.to_wire()


@router.get("/corrections")
async def list_corrections():
    """The labelled dataset of corrections, in submission order."""
    service = await _service()
    return [record.to_wire() for record in await service.list_corrections()]
