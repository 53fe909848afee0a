"""
Pipeline endpoints: document intake, HTTP-triggered decisions and stats.
"""
from typing import Any

from fastapi import APIRouter, Body, HTTPException

from api.db import get_db, get_pipeline
from api.models import ContractError, DocumentAccepted, PipelineStats
from hunter.contracts import validate
from hunter.errors import ContractViolation

router = APIRouter(prefix="/api", tags=["pipeline"])


def contract_error(e: ContractViolation) -> HTTPException:
    detail = ContractError(schema_name=e.schema, fields=e.fields, message=e.message)
    return HTTPException(status_code=422, detail=detail.model_dump(by_alias=True))


@router.post("/documents", response_model=DocumentAccepted, status_code=202)
async def submit_document(payload: dict[str, Any] = Body(...)):
    """Queue a candidate document for extraction and verification."""
    try:
        document = validate(payload, "candidate_document")
    except ContractViolation as e:
        raise contract_error(e)

    pipeline = await get_pipeline()
    message_id = await pipeline.submit(document)
    return DocumentAccepted(message_id=message_id, key=document.source_url)


@router.post("/decisions")
async def make_decision(payload: dict[str, Any] = Body(...)):
    """Decide an enriched record and route it (idempotent per sourceURL)."""
    pipeline = await get_pipeline()
    try:
        record = await pipeline.decision.dispatch(payload)
    except ContractViolation as e:
        raise contract_error(e)
    return record.to_wire()


@router.get("/stats", response_model=PipelineStats)
async def get_stats():
    """Join states, decision counts and queue sizes."""
    db = await get_db()
    return PipelineStats(**await db.get_pipeline_stats())
