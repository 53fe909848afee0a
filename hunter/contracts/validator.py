"""Contract validation at stage boundaries."""

from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ValidationError

from ..errors import ContractViolation
from ..models.records import (
    AnalysisRecord,
    BranchReport,
    CandidateDocument,
    CorrectionRecord,
    EnrichedRecord,
    QCResult,
    VerificationResult,
)

SCHEMAS: dict[str, type[BaseModel]] = {
    "candidate_document": CandidateDocument,
    "analysis_record": AnalysisRecord,
    "verification_result": VerificationResult,
    "qc_result": QCResult,
    "branch_report": BranchReport,
    "enriched_record": EnrichedRecord,
    "correction_record": CorrectionRecord,
}


def _describe(error: Mapping[str, Any]) -> tuple[str, str]:
    """Return (field path, human message) for one pydantic error."""
    field = ".".join(str(part) for part in error["loc"]) or "<root>"
    return field, f"{field}: {error['msg']}"


def validate(record: Any, schema: str) -> BaseModel:
    """Validate a record against a named schema.

    Args:
        record: Wire dict (or an already-built model of the schema type)
        schema: One of SCHEMAS

    Returns:
        The typed record

    Raises:
        ContractViolation: naming every offending field
        KeyError: for an unknown schema name
    """
    model = SCHEMAS[schema]
    if isinstance(record, model):
        return record

    try:
        return model.model_validate(record)
    except ValidationError as e:
        described = [_describe(err) for err in e.errors()]
        fields = list(dict.fromkeys(field for field, _ in described))
        message = "; ".join(text for _, text in described)
        raise ContractViolation(schema, fields, message) from e
