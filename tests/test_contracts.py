"""
Tests for the contract validator and the record models behind it.
"""

import pytest

from factories import ANALYSIS_WIRE, DOCUMENT_WIRE, analysis_wire, make_enriched, make_verification
from hunter.contracts import SCHEMAS, validate
from hunter.errors import ContractViolation
from hunter.models import AnalysisRecord, Branch, BranchReport, CandidateDocument, EnrichedRecord


class TestAnalysisRecordSchema:
    """analysis_record validation."""

    def test_accepts_minimal_valid_example(self):
        record = validate(ANALYSIS_WIRE, "analysis_record")
        assert isinstance(record, AnalysisRecord)
        assert record.company_name == "Karpatska Logistics"
        assert record.key == "https://example.com/news-story-123"

    @pytest.mark.parametrize("field", list(ANALYSIS_WIRE))
    def test_rejects_missing_field(self, field):
        data = dict(ANALYSIS_WIRE)
        del data[field]
        with pytest.raises(ContractViolation) as exc:
            validate(data, "analysis_record")
        assert exc.value.schema == "analysis_record"
        assert field in exc.value.fields

    @pytest.mark.parametrize("score", [0, 11, -3])
    def test_rejects_score_out_of_range(self, score):
        with pytest.raises(ContractViolation) as exc:
            validate(analysis_wire(opportunityScore=score), "analysis_record")
        assert exc.value.fields == ["opportunityScore"]

    def test_rejects_fractional_score(self):
        with pytest.raises(ContractViolation):
            validate(analysis_wire(opportunityScore=7.5), "analysis_record")

    @pytest.mark.parametrize("score", [1, 10])
    def test_score_bounds_inclusive(self, score):
        assert validate(analysis_wire(opportunityScore=score), "analysis_record").opportunity_score == score

    def test_rejects_relative_url(self):
        with pytest.raises(ContractViolation) as exc:
            validate(analysis_wire(sourceURL="/news/story"), "analysis_record")
        assert "sourceURL" in exc.value.fields

    def test_keeps_source_url_verbatim(self):
        url = "https://Example.com/News?id=7"
        assert validate(analysis_wire(sourceURL=url), "analysis_record").source_url == url

    def test_rejects_unknown_field(self):
        with pytest.raises(ContractViolation):
            validate(analysis_wire(extra="nope"), "analysis_record")

    def test_names_every_offending_field(self):
        data = analysis_wire(opportunityScore=42)
        del data["region"]
        with pytest.raises(ContractViolation) as exc:
            validate(data, "analysis_record")
        assert set(exc.value.fields) == {"region", "opportunityScore"}


class TestOtherSchemas:
    """Remaining named schemas."""

    def test_candidate_document(self):
        document = validate(DOCUMENT_WIRE, "candidate_document")
        assert isinstance(document, CandidateDocument)
        assert document.source_domain == "example.com"

    def test_candidate_document_requires_text(self):
        with pytest.raises(ContractViolation) as exc:
            validate({**DOCUMENT_WIRE, "text": ""}, "candidate_document")
        assert exc.value.fields == ["text"]

    def test_enriched_record_wire_round_trip(self):
        enriched = make_enriched(confidence=92, quality=95)
        wire = enriched.to_wire()
        assert "internalQc" in wire
        assert wire["verification"]["confidenceScore"] == 92
        assert validate(wire, "enriched_record") == enriched

    def test_enriched_record_requires_both_results(self):
        wire = make_enriched(confidence=92, quality=95).to_wire()
        del wire["internalQc"]
        with pytest.raises(ContractViolation) as exc:
            validate(wire, "enriched_record")
        assert "internalQc" in exc.value.fields

    def test_branch_report_payload_must_match_branch(self):
        with pytest.raises(ContractViolation):
            validate(
                {"branch": "qc", "analysis": ANALYSIS_WIRE, "verification": make_verification().to_wire()},
                "branch_report",
            )

    def test_branch_report_key_and_result(self):
        report = BranchReport(
            branch=Branch.VERIFICATION,
            analysis=AnalysisRecord.model_validate(ANALYSIS_WIRE),
            verification=make_verification(confidence=80),
        )
        assert report.key == ANALYSIS_WIRE["sourceURL"]
        assert report.result.confidence_score == 80

    def test_model_instance_passes_through(self):
        enriched = make_enriched(confidence=50, quality=50)
        assert validate(enriched, "enriched_record") is enriched
        assert isinstance(enriched, EnrichedRecord)

    def test_unknown_schema(self):
        with pytest.raises(KeyError):
            validate({}, "no_such_schema")

    def test_registered_schemas(self):
        assert set(SCHEMAS) == {
            "candidate_document",
            "analysis_record",
            "verification_result",
            "qc_result",
            "branch_report",
            "enriched_record",
            "correction_record",
        }
