"""Data models for pipeline records.

Python attributes are snake_case; the JSON wire form uses the camelCase
field names the upstream collector and downstream consumers exchange
(``to_wire()``). Records are frozen: later stages add fields by
subclassing, never by mutating an earlier record.
"""

from datetime import datetime
from enum import Enum
from typing import Annotated, Any

from pydantic import (
    AfterValidator,
    AnyUrl,
    BaseModel,
    ConfigDict,
    Field,
    StringConstraints,
    TypeAdapter,
    ValidationError,
    model_validator,
)
from pydantic.alias_generators import to_camel

_URL_ADAPTER = TypeAdapter(AnyUrl)


def _check_uri(value: str) -> str:
    """Accept absolute URIs only; the original string is kept as identity key."""
    try:
        url = _URL_ADAPTER.validate_python(value)
    except ValidationError as e:
        raise ValueError(f"not a valid URI: {value!r}") from e
    if not url.host:
        raise ValueError(f"URI has no host: {value!r}")
    return value


Uri = Annotated[str, AfterValidator(_check_uri)]
NonEmptyStr = Annotated[str, StringConstraints(min_length=1)]


class CheckStatus(str, Enum):
    """Outcome of a pass/fail quality check."""

    PASSED = "Passed"
    FAILED = "Failed"


class Decision(str, Enum):
    """Final disposition of a candidate."""

    APPROVED = "Approved"
    REJECTED = "Rejected"
    MANUAL_REVIEW = "ManualReview"


class Branch(str, Enum):
    """The two verification branches joined per candidate."""

    VERIFICATION = "verification"
    QC = "qc"

    @property
    def sibling(self) -> "Branch":
        return Branch.QC if self is Branch.VERIFICATION else Branch.VERIFICATION


class RecordModel(BaseModel):
    """Base for all wire records."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
        frozen=True,
    )

    def to_wire(self) -> dict[str, Any]:
        """JSON-safe dict using the wire (camelCase) field names."""
        return self.model_dump(by_alias=True, mode="json")


class CandidateDocument(RecordModel):
    """A relevant document handed over by the upstream content collector."""

    text: NonEmptyStr
    source_url: Uri = Field(alias="sourceURL")
    source_domain: NonEmptyStr = Field(alias="sourceDomain")


class AnalysisRecord(RecordModel):
    """Structured opportunity extracted from a document by the model."""

    company_name: NonEmptyStr
    industry: NonEmptyStr
    region: NonEmptyStr
    opportunity_type: NonEmptyStr
    summary: NonEmptyStr
    potential_need: list[str]
    opportunity_score: int = Field(ge=1, le=10)
    key_quote: NonEmptyStr
    source_url: Uri = Field(alias="sourceURL")

    @property
    def key(self) -> str:
        """Identity key correlating this record through the pipeline."""
        return self.source_url

    def analysis_fields(self) -> dict[str, Any]:
        """Only the AnalysisRecord fields, by Python name."""
        return self.model_dump(include=set(AnalysisRecord.model_fields))


class VerificationResult(RecordModel):
    """Output of the external fact-check branch."""

    confidence_score: int = Field(ge=0, le=100)
    source_reputation_score: float = Field(ge=0, le=100)
    corroborating_sources: int = Field(ge=0)
    corroborating_urls: list[str] = Field(default_factory=list)
    checked_at: datetime = Field(default_factory=datetime.now)


class QCResult(RecordModel):
    """Output of the internal quality-control branch."""

    quality_score: int = Field(ge=0, le=100)
    rules_passed: int = Field(ge=0)
    rules_failed: int = Field(ge=0)
    failed_rules: list[str] = Field(default_factory=list)
    logical_consistency: CheckStatus
    tone_analysis: CheckStatus
    checked_at: datetime = Field(default_factory=datetime.now)


class BranchReport(RecordModel):
    """Message a verification branch publishes for the join coordinator."""

    branch: Branch
    analysis: AnalysisRecord
    verification: VerificationResult | None = None
    qc: QCResult | None = Field(default=None, alias="internalQc")

    @model_validator(mode="after")
    def _payload_matches_branch(self) -> "BranchReport":
        if self.branch is Branch.VERIFICATION and (self.verification is None or self.qc is not None):
            raise ValueError("verification report must carry exactly a verification result")
        if self.branch is Branch.QC and (self.qc is None or self.verification is not None):
            raise ValueError("qc report must carry exactly an internalQc result")
        return self

    @property
    def key(self) -> str:
        return self.analysis.key

    @property
    def result(self) -> VerificationResult | QCResult:
        return self.verification if self.branch is Branch.VERIFICATION else self.qc


class EnrichedRecord(AnalysisRecord):
    """AnalysisRecord joined with both branch results."""

    verification: VerificationResult
    qc: QCResult = Field(alias="internalQc")
    partial: bool = False  # True only when a branch was replaced by a degraded default

    @classmethod
    def build(
        cls,
        analysis: AnalysisRecord,
        verification: VerificationResult,
        qc: QCResult,
        partial: bool = False,
    ) -> "EnrichedRecord":
        return cls(
            **analysis.analysis_fields(),
            verification=verification,
            qc=qc,
            partial=partial,
        )


class FinalRecord(EnrichedRecord):
    """EnrichedRecord with the decision attached."""

    decision: Decision
    decided_at: datetime = Field(default_factory=datetime.now)


class ManualReviewEntry(FinalRecord):
    """A FinalRecord parked for human review under a durable entry id."""

    id: NonEmptyStr
    queued_at: datetime


class CorrectionRecord(AnalysisRecord):
    """A human-corrected analysis, kept as a labelled training example."""

    entry_id: NonEmptyStr
    corrected_at: datetime = Field(default_factory=datetime.now)
