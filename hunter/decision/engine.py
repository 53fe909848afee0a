"""Decision engine: final disposition of an enriched record."""

import secrets
from collections.abc import Callable
from datetime import datetime

from ..bus import TOPIC_APPROVED, TOPIC_REJECTED, MessageBus
from ..contracts import validate
from ..logging_config import get_logger
from ..models.records import Decision, EnrichedRecord, FinalRecord
from ..storage.database import PipelineDatabase

logger = get_logger(__name__)

APPROVE_ABOVE = 90
REJECT_BELOW = 70

_TOPICS = {
    Decision.APPROVED: TOPIC_APPROVED,
    Decision.REJECTED: TOPIC_REJECTED,
}


def new_entry_id() -> str:
    """Random review entry id, never derived from the identity key."""
    return secrets.token_hex(8)


def decide(record: EnrichedRecord) -> Decision:
    """Decision matrix over confidence and quality scores.

    Approved when both exceed 90, Rejected when either is below 70,
    ManualReview otherwise.
    """
    confidence = record.verification.confidence_score
    quality = record.qc.quality_score
    if confidence > APPROVE_ABOVE and quality > APPROVE_ABOVE:
        return Decision.APPROVED
    if confidence < REJECT_BELOW or quality < REJECT_BELOW:
        return Decision.REJECTED
    return Decision.MANUAL_REVIEW


class DecisionEngine:
    """Records one decision per identity key and routes it."""

    def __init__(
        self,
        db: PipelineDatabase,
        bus: MessageBus,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.db = db
        self.bus = bus
        self.clock = clock

    async def dispatch(self, enriched: EnrichedRecord | dict) -> FinalRecord:
        """Decide and route an enriched record.

        Safe to call repeatedly for the same key: the first stored decision
        is reused, and routing (review queue or downstream topic) happens
        only until the routed flag is set. A resolved review item is never
        queued again.

        Raises:
            ContractViolation: the record does not match enriched_record
        """
        enriched = validate(enriched, "enriched_record")
        decision = decide(enriched)
        record = FinalRecord(
            **enriched.model_dump(include=set(EnrichedRecord.model_fields)),
            decision=decision,
            decided_at=self.clock(),
        )

        routed = False
        if not await self.db.insert_final_record(record):
            stored = await self.db.get_final_record(record.key)
            record, routed = stored.record, stored.routed
            logger.info("Decision for %s already recorded: %s", record.key, record.decision.value)
        else:
            logger.info(
                "Decision for %s (%s): %s [confidence=%d quality=%d partial=%s]",
                record.company_name, record.key, record.decision.value,
                record.verification.confidence_score, record.qc.quality_score, record.partial,
            )

        if routed:
            logger.info("Decision for %s already routed", record.key)
        elif record.decision is Decision.MANUAL_REVIEW:
            entry = await self.db.upsert_review_entry(new_entry_id(), record, self.clock())
            logger.info("Queued %s for manual review as %s", record.key, entry.id)
            await self.db.mark_final_routed(record.key)
        else:
            await self.bus.publish(_TOPICS[record.decision], record.to_wire(), key=record.key)
            await self.db.mark_final_routed(record.key)

        return record
