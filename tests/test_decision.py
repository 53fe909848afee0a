"""
Tests for the decision matrix and the idempotent decision engine.
"""

import pytest

from factories import RecordingBus, make_enriched
from hunter.bus import TOPIC_APPROVED, TOPIC_REJECTED
from hunter.decision import DecisionEngine, decide
from hunter.errors import ContractViolation
from hunter.models import Decision


class TestDecisionMatrix:
    """Boundaries of decide()."""

    @pytest.mark.parametrize(
        "confidence,quality,expected",
        [
            (92, 95, Decision.APPROVED),
            (91, 91, Decision.APPROVED),
            (90, 95, Decision.MANUAL_REVIEW),
            (95, 90, Decision.MANUAL_REVIEW),
            (89, 95, Decision.MANUAL_REVIEW),
            (80, 85, Decision.MANUAL_REVIEW),
            (71, 71, Decision.MANUAL_REVIEW),
            (70, 70, Decision.MANUAL_REVIEW),
            (69, 95, Decision.REJECTED),
            (95, 69, Decision.REJECTED),
            (0, 0, Decision.REJECTED),
            (100, 100, Decision.APPROVED),
        ],
    )
    def test_boundaries(self, confidence, quality, expected):
        assert decide(make_enriched(confidence=confidence, quality=quality)) is expected


class TestDecisionEngine:
    """dispatch(): persistence, routing and idempotency."""

    def test_approved_is_published_once(self, with_db):
        bus = RecordingBus()

        async def scenario(db):
            engine = DecisionEngine(db, bus)
            enriched = make_enriched(confidence=92, quality=95)
            first = await engine.dispatch(enriched)
            second = await engine.dispatch(enriched)
            return first, second, await db.get_final_record(enriched.key)

        first, second, stored = with_db(scenario)
        assert first.decision is Decision.APPROVED
        assert second == first
        assert stored.routed is True
        assert bus.topics() == [TOPIC_APPROVED]
        assert bus.messages[0][2] == first.key
        assert bus.messages[0][1]["decision"] == "Approved"

    def test_rejected_goes_to_rejected_topic(self, with_db):
        bus = RecordingBus()

        async def scenario(db):
            return await DecisionEngine(db, bus).dispatch(make_enriched(confidence=40, quality=95))

        record = with_db(scenario)
        assert record.decision is Decision.REJECTED
        assert bus.topics() == [TOPIC_REJECTED]

    def test_manual_review_is_queued_once(self, with_db):
        bus = RecordingBus()

        async def scenario(db):
            engine = DecisionEngine(db, bus)
            enriched = make_enriched(confidence=80, quality=85)
            await engine.dispatch(enriched)
            await engine.dispatch(enriched)
            return await db.list_review_entries()

        entries = with_db(scenario)
        assert len(entries) == 1
        assert entries[0].decision is Decision.MANUAL_REVIEW
        assert entries[0].id != entries[0].source_url
        assert bus.messages == []

    def test_first_decision_wins(self, with_db):
        bus = RecordingBus()

        async def scenario(db):
            engine = DecisionEngine(db, bus)
            await engine.dispatch(make_enriched(confidence=92, quality=95))
            # Same key, different scores: the stored decision is reused
            return await engine.dispatch(make_enriched(confidence=10, quality=10))

        record = with_db(scenario)
        assert record.decision is Decision.APPROVED
        assert bus.topics() == [TOPIC_APPROVED]

    def test_accepts_wire_dict(self, with_db):
        bus = RecordingBus()

        async def scenario(db):
            wire = make_enriched(confidence=92, quality=95).to_wire()
            return await DecisionEngine(db, bus).dispatch(wire)

        assert with_db(scenario).decision is Decision.APPROVED

    def test_rejects_invalid_record(self, with_db):
        bus = RecordingBus()

        async def scenario(db):
            wire = make_enriched(confidence=92, quality=95).to_wire()
            del wire["verification"]
            await DecisionEngine(db, bus).dispatch(wire)

        with pytest.raises(ContractViolation):
            with_db(scenario)
        assert bus.messages == []
