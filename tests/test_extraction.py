"""
Tests for the extraction stage and its prompt template cache.
"""

import asyncio
import json

import pytest

from factories import ANALYSIS_WIRE, DOCUMENT_WIRE, FakeModel, RecordingBus, analysis_wire
from hunter.bus import TOPIC_EXTERNAL_VERIFICATION, TOPIC_INTERNAL_QC
from hunter.errors import CollaboratorFailure, ContractViolation
from hunter.extraction import PLACEHOLDER, ExtractionStage, PromptTemplateCache, parse_model_json
from hunter.join import STATE_AWAITING_BOTH, JoinCoordinator
from hunter.models import CandidateDocument


@pytest.fixture
def prompt_file(tmp_path):
    path = tmp_path / "prompt.txt"
    path.write_text(f"Extract the opportunity.\n\nARTICLE:\n{PLACEHOLDER}\n", encoding="utf-8")
    return path


def document(**overrides) -> CandidateDocument:
    return CandidateDocument.model_validate({**DOCUMENT_WIRE, **overrides})


class TestPromptTemplateCache:
    """Lazy, single-flight template load."""

    def test_concurrent_first_callers_load_once(self, prompt_file):
        cache = PromptTemplateCache(prompt_file)

        async def scenario():
            return await asyncio.gather(*(cache.get() for _ in range(20)))

        templates = asyncio.run(scenario())
        assert len(set(templates)) == 1
        assert cache.loads == 1

    def test_cached_after_first_load(self, prompt_file):
        cache = PromptTemplateCache(prompt_file)
        asyncio.run(cache.get())
        prompt_file.write_text("changed", encoding="utf-8")
        assert "Extract the opportunity" in asyncio.run(cache.get())

    def test_render_substitutes_document_text(self, prompt_file):
        rendered = asyncio.run(PromptTemplateCache(prompt_file).render("Plant opens in Lviv."))
        assert "Plant opens in Lviv." in rendered
        assert PLACEHOLDER not in rendered

    def test_packaged_template_has_placeholder(self):
        assert PLACEHOLDER in asyncio.run(PromptTemplateCache().get())


class TestParseModelJson:
    """Tolerant JSON parsing of model output."""

    def test_plain(self):
        assert parse_model_json(json.dumps(ANALYSIS_WIRE)) == ANALYSIS_WIRE

    def test_code_fence(self):
        response = f"```json\n{json.dumps(ANALYSIS_WIRE)}\n```"
        assert parse_model_json(response) == ANALYSIS_WIRE

    def test_surrounding_prose(self):
        response = f"Here is the analysis:\n{json.dumps(ANALYSIS_WIRE)}\nLet me know."
        assert parse_model_json(response)["companyName"] == "Karpatska Logistics"

    @pytest.mark.parametrize("response", ["", "no json here", "[1, 2, 3]", "{broken"])
    def test_unparseable(self, response):
        assert parse_model_json(response) is None


class TestExtractionStage:
    """extract(), fan_out() and the no-partial-output guarantee."""

    def run_stage(self, with_db, prompt_file, model, doc=None):
        bus = RecordingBus()

        async def scenario(db):
            join = JoinCoordinator(db, dispatch=None)
            stage = ExtractionStage(model, PromptTemplateCache(prompt_file), join, bus)
            analysis = await stage.process(doc or document())
            return analysis, await db.get_join_entry(DOCUMENT_WIRE["sourceURL"])

        return bus, with_db(scenario)

    def test_success_records_fan_out_then_publishes_both(self, with_db, prompt_file):
        model = FakeModel(json.dumps(ANALYSIS_WIRE))
        bus, (analysis, entry) = self.run_stage(with_db, prompt_file, model)

        assert analysis.company_name == "Karpatska Logistics"
        assert entry.state == STATE_AWAITING_BOTH
        assert sorted(bus.topics()) == sorted([TOPIC_EXTERNAL_VERIFICATION, TOPIC_INTERNAL_QC])
        for _, payload, key in bus.messages:
            assert payload == ANALYSIS_WIRE
            assert key == ANALYSIS_WIRE["sourceURL"]
        assert DOCUMENT_WIRE["text"] in model.prompts[0]

    def test_source_url_comes_from_document(self, with_db, prompt_file):
        model = FakeModel(json.dumps(analysis_wire(sourceURL="")))
        bus, (analysis, _) = self.run_stage(with_db, prompt_file, model)
        assert analysis.source_url == DOCUMENT_WIRE["sourceURL"]

    def test_invalid_output_publishes_nothing(self, with_db, prompt_file):
        model = FakeModel(json.dumps(analysis_wire(opportunityScore=15)))
        bus = RecordingBus()

        async def scenario(db):
            stage = ExtractionStage(model, PromptTemplateCache(prompt_file), JoinCoordinator(db, None), bus)
            with pytest.raises(ContractViolation):
                await stage.process(document())
            return await db.get_join_entry(DOCUMENT_WIRE["sourceURL"])

        assert with_db(scenario) is None
        assert bus.messages == []

    def test_non_json_output_publishes_nothing(self, with_db, prompt_file):
        model = FakeModel("Sorry, I cannot help with that.")
        bus = RecordingBus()

        async def scenario(db):
            stage = ExtractionStage(model, PromptTemplateCache(prompt_file), JoinCoordinator(db, None), bus)
            with pytest.raises(ContractViolation) as exc:
                await stage.process(document())
            return exc.value

        violation = with_db(scenario)
        assert violation.schema == "analysis_record"
        assert bus.messages == []

    def test_model_failure_is_retryable(self, with_db, prompt_file):
        model = FakeModel(failures=1)
        bus = RecordingBus()

        async def scenario(db):
            stage = ExtractionStage(model, PromptTemplateCache(prompt_file), JoinCoordinator(db, None), bus)
            with pytest.raises(CollaboratorFailure):
                await stage.process(document())
            return await stage.process(document())

        assert with_db(scenario).company_name == "Karpatska Logistics"
        assert len(bus.messages) == 2
