"""Data models for pipeline records."""

from .records import (
    AnalysisRecord,
    Branch,
    BranchReport,
    CandidateDocument,
    CheckStatus,
    CorrectionRecord,
    Decision,
    EnrichedRecord,
    FinalRecord,
    ManualReviewEntry,
    QCResult,
    RecordModel,
    VerificationResult,
)

__all__ = [
    "AnalysisRecord",
    "Branch",
    "BranchReport",
    "CandidateDocument",
    "CheckStatus",
    "CorrectionRecord",
    "Decision",
    "EnrichedRecord",
    "FinalRecord",
    "ManualReviewEntry",
    "QCResult",
    "RecordModel",
    "VerificationResult",
]
