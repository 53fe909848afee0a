"""Manual review queue and correction recorder."""

from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any

from ..contracts import validate
from ..errors import MissingIdentifier, ReviewEntryNotFound
from ..logging_config import get_logger
from ..models.records import CorrectionRecord, ManualReviewEntry
from ..storage.database import PipelineDatabase

logger = get_logger(__name__)


class ManualReviewService:
    """Reads the durable review queue and records human corrections."""

    def __init__(
        self,
        db: PipelineDatabase,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.db = db
        self.clock = clock

    async def list_entries(self) -> list[ManualReviewEntry]:
        return await self.db.list_review_entries()

    async def get_entry(self, entry_id: str) -> ManualReviewEntry:
        entry = await self.db.get_review_entry(entry_id)
        if entry is None:
            raise ReviewEntryNotFound(entry_id)
        return entry

    async def submit_correction(self, payload: Mapping[str, Any]) -> CorrectionRecord:
        """Record a human-corrected analysis and resolve its review entry.

        The correction is committed before the entry is deleted, so a crash
        in between leaves the entry in the queue rather than losing the
        correction.

        Raises:
            MissingIdentifier: entryId absent or blank (nothing is written)
            ReviewEntryNotFound: no entry with that id (nothing is written)
            ContractViolation: corrected analysis is invalid (nothing is written)
        """
        data = dict(payload)
        entry_id = data.pop("entryId", None)
        snake_id = data.pop("entry_id", None)
        if entry_id is None:
            entry_id = snake_id
        if not isinstance(entry_id, str) or not entry_id.strip():
            raise MissingIdentifier("entryId is required to submit a correction")

        entry = await self.db.get_review_entry(entry_id)
        if entry is None:
            raise ReviewEntryNotFound(entry_id)

        data["entryId"] = entry_id
        data["correctedAt"] = self.clock()
        correction = validate(data, "correction_record")

        await self.db.append_correction(correction, entry.key)
        if not await self.db.delete_review_entry(entry_id):
            logger.warning("Review entry %s was already resolved", entry_id)

        logger.info("Correction recorded for %s (entry %s)", entry.key, entry_id)
        return correction

    async def list_corrections(self) -> list[CorrectionRecord]:
        return await self.db.list_corrections()
