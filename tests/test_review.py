"""
Tests for the manual review queue and correction recorder.
"""

import pytest

from factories import RecordingBus, analysis_wire, make_enriched
from hunter.decision import DecisionEngine
from hunter.errors import ContractViolation, MissingIdentifier, ReviewEntryNotFound
from hunter.review import ManualReviewService


async def queue_entry(db, url="https://example.com/news-story-123"):
    await DecisionEngine(db, RecordingBus()).dispatch(
        make_enriched(confidence=80, quality=85, sourceURL=url)
    )
    entries = await db.list_review_entries()
    return next(e for e in entries if e.source_url == url)


class TestListing:
    """Queue reads come from the durable store."""

    def test_empty_queue_is_empty_list(self, with_db):
        async def scenario(db):
            return await ManualReviewService(db).list_entries()

        assert with_db(scenario) == []

    def test_entries_in_queue_order(self, with_db):
        async def scenario(db):
            first = await queue_entry(db, "https://example.com/a")
            second = await queue_entry(db, "https://example.com/b")
            return first, second, await ManualReviewService(db).list_entries()

        first, second, entries = with_db(scenario)
        assert [e.id for e in entries] == [first.id, second.id]

    def test_get_entry(self, with_db):
        async def scenario(db):
            entry = await queue_entry(db)
            service = ManualReviewService(db)
            found = await service.get_entry(entry.id)
            with pytest.raises(ReviewEntryNotFound):
                await service.get_entry("missing")
            return entry, found

        entry, found = with_db(scenario)
        assert found == entry


class TestSubmitCorrection:
    """Validation order and durability of corrections."""

    def test_missing_id_mutates_nothing(self, with_db):
        async def scenario(db):
            await queue_entry(db)
            service = ManualReviewService(db)
            for payload in (analysis_wire(), analysis_wire(entryId=""), analysis_wire(entryId="   ")):
                with pytest.raises(MissingIdentifier):
                    await service.submit_correction(payload)
            return await service.list_entries(), await service.list_corrections()

        entries, corrections = with_db(scenario)
        assert len(entries) == 1
        assert corrections == []

    def test_unknown_id_mutates_nothing(self, with_db):
        async def scenario(db):
            await queue_entry(db)
            service = ManualReviewService(db)
            with pytest.raises(ReviewEntryNotFound):
                await service.submit_correction(analysis_wire(entryId="deadbeef"))
            return await service.list_entries(), await service.list_corrections()

        entries, corrections = with_db(scenario)
        assert len(entries) == 1
        assert corrections == []

    def test_invalid_analysis_mutates_nothing(self, with_db):
        async def scenario(db):
            entry = await queue_entry(db)
            service = ManualReviewService(db)
            with pytest.raises(ContractViolation):
                await service.submit_correction(analysis_wire(entryId=entry.id, opportunityScore=0))
            return await service.list_entries(), await service.list_corrections()

        entries, corrections = with_db(scenario)
        assert len(entries) == 1
        assert corrections == []

    def test_valid_correction_appended_and_entry_removed(self, with_db):
        async def scenario(db):
            entry = await queue_entry(db)
            service = ManualReviewService(db)
            correction = await service.submit_correction(
                analysis_wire(entryId=entry.id, opportunityScore=6, industry="Logistics")
            )
            return entry, correction, await service.list_entries(), await service.list_corrections()

        entry, correction, entries, corrections = with_db(scenario)
        assert entries == []
        assert corrections == [correction]
        assert correction.entry_id == entry.id
        assert correction.opportunity_score == 6
        assert correction.to_wire()["entryId"] == entry.id

    def test_second_submission_for_resolved_entry(self, with_db):
        async def scenario(db):
            entry = await queue_entry(db)
            service = ManualReviewService(db)
            await service.submit_correction(analysis_wire(entryId=entry.id))
            with pytest.raises(ReviewEntryNotFound):
                await service.submit_correction(analysis_wire(entryId=entry.id))
            return await service.list_corrections()

        assert len(with_db(scenario)) == 1

    def test_redelivered_decision_does_not_requeue_resolved_entry(self, with_db):
        async def scenario(db):
            entry = await queue_entry(db)
            service = ManualReviewService(db)
            await service.submit_correction(analysis_wire(entryId=entry.id))
            # Same enriched record arrives again (sweeper recovery, repeated POST)
            record = await DecisionEngine(db, RecordingBus()).dispatch(
                make_enriched(confidence=80, quality=85)
            )
            return record, await service.list_entries(), await db.get_final_record(record.key)

        record, entries, stored = with_db(scenario)
        assert record.decision.value == "ManualReview"
        assert entries == []
        assert stored.routed is True
