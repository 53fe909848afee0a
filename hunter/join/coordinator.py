"""Join coordinator: fan-in of the two verification branches.

Per identity key the correlation table holds
``{analysis, verification?, qc?, state, fan_out_started_at, partial, version}``.

States:
    awaiting_both -> awaiting_verification | awaiting_qc -> complete -> dispatched
    awaiting_*    -> complete (partial, degraded defaults) -> timed_out

Every transition is a compare-and-set on ``version``. Only the writer that
moves an entry to ``complete`` forwards it to the decision engine, so two
concurrent deliveries can never both dispatch. ``dispatched`` / ``timed_out``
rows are kept as dedup tombstones (payload cleared) until ``dedup_ttl``
expires; any result arriving for them is discarded.

An entry stuck in ``complete`` (crash between forwarding and recording
``dispatched``) is re-forwarded by the sweeper once it is older than the
join timeout. The decision engine is idempotent per key, so this cannot
produce a second decision.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from ..errors import CollaboratorFailure, JoinTimeout
from ..logging_config import get_logger
from ..models.records import (
    AnalysisRecord,
    Branch,
    BranchReport,
    CheckStatus,
    EnrichedRecord,
    QCResult,
    VerificationResult,
)
from ..storage.database import JoinEntry, PipelineDatabase
from ..verification.qc import RULE_NAMES, TOTAL_RULES

logger = get_logger(__name__)

STATE_AWAITING_BOTH = "awaiting_both"
STATE_AWAITING = {
    Branch.VERIFICATION: "awaiting_verification",
    Branch.QC: "awaiting_qc",
}
STATE_COMPLETE = "complete"
STATE_DISPATCHED = "dispatched"
STATE_TIMED_OUT = "timed_out"

WAITING_STATES = (STATE_AWAITING_BOTH, *STATE_AWAITING.values())
TERMINAL_STATES = (STATE_DISPATCHED, STATE_TIMED_OUT)

_COLUMNS = {
    Branch.VERIFICATION: "verification_json",
    Branch.QC: "qc_json",
}

Dispatcher = Callable[[EnrichedRecord], Awaitable[Any]]


class JoinOutcome(str, Enum):
    """What accept() did with a branch report."""

    STORED = "stored"  # first branch kept, waiting for the sibling
    DISPATCHED = "dispatched"  # second branch completed the join
    DUPLICATE = "duplicate"  # redelivery, late sibling, or join already in flight


@dataclass
class SweepReport:
    """Result of one timeout sweep."""

    timed_out: list[str] = field(default_factory=list)
    recovered: list[str] = field(default_factory=list)
    purged: int = 0
    failed: list[str] = field(default_factory=list)


def degraded_verification(now: datetime) -> VerificationResult:
    """Stand-in for a fact check that never reported: lowest confidence."""
    return VerificationResult(
        confidence_score=0,
        source_reputation_score=0,
        corroborating_sources=0,
        corroborating_urls=[],
        checked_at=now,
    )


def degraded_qc(now: datetime) -> QCResult:
    """Stand-in for a QC run that never reported: every check failed."""
    return QCResult(
        quality_score=0,
        rules_passed=0,
        rules_failed=TOTAL_RULES,
        failed_rules=list(RULE_NAMES),
        logical_consistency=CheckStatus.FAILED,
        tone_analysis=CheckStatus.FAILED,
        checked_at=now,
    )


_DEGRADED = {
    Branch.VERIFICATION: degraded_verification,
    Branch.QC: degraded_qc,
}


class JoinCoordinator:
    """Correlates branch results by identity key and forwards each key once."""

    def __init__(
        self,
        db: PipelineDatabase,
        dispatch: Dispatcher,
        join_timeout_seconds: float = 300.0,
        dedup_ttl_seconds: float = 24 * 3600.0,
        clock: Callable[[], datetime] = datetime.now,
        max_cas_attempts: int = 20,
    ):
        """Initialize the coordinator.

        Args:
            db: Durable store holding the correlation table
            dispatch: Async callable receiving each EnrichedRecord (decision engine)
            join_timeout_seconds: How long a fan-out may wait for its branches
            dedup_ttl_seconds: How long dispatched tombstones are kept
            clock: Time source (injected in tests)
            max_cas_attempts: Bound on compare-and-set retries per call
        """
        self.db = db
        self.dispatch = dispatch
        self.join_timeout = timedelta(seconds=join_timeout_seconds)
        self.dedup_ttl = timedelta(seconds=dedup_ttl_seconds)
        self.clock = clock
        self.max_cas_attempts = max_cas_attempts

    async def open(self, analysis: AnalysisRecord) -> bool:
        """Record that a fan-out for this analysis has started.

        Returns:
            True if the entry was created, False if it already existed
        """
        created = await self.db.insert_join_entry(
            analysis.key, STATE_AWAITING_BOTH, analysis.to_wire(), self.clock()
        )
        if created:
            logger.info("Fan-out recorded for %s", analysis.key)
        else:
            logger.info("Fan-out for %s already recorded", analysis.key)
        return created

    async def accept(self, report: BranchReport) -> JoinOutcome:
        """Store one branch result; forward the join when it is the second."""
        key = report.key
        column = _COLUMNS[report.branch]
        result_wire = report.result.to_wire()

        for _ in range(self.max_cas_attempts):
            entry = await self.db.get_join_entry(key)
            if entry is None:
                # Fan-out record missing (lost or raced): rebuild it from the report
                await self.db.insert_join_entry(
                    key, STATE_AWAITING_BOTH, report.analysis.to_wire(), self.clock()
                )
                continue

            if entry.state in TERMINAL_STATES:
                logger.info(
                    "Discarding %s result for %s (already %s)",
                    report.branch.value, key, entry.state,
                )
                return JoinOutcome.DUPLICATE

            if entry.state == STATE_COMPLETE:
                logger.info(
                    "Discarding %s result for %s (join in flight)", report.branch.value, key
                )
                return JoinOutcome.DUPLICATE

            if getattr(entry, report.branch.value) is not None:
                logger.info("Duplicate %s result for %s", report.branch.value, key)
                return JoinOutcome.DUPLICATE

            if getattr(entry, report.branch.sibling.value) is None:
                won = await self.db.compare_and_set_join_entry(
                    key,
                    entry.version,
                    {column: result_wire, "state": STATE_AWAITING[report.branch.sibling]},
                    self.clock(),
                )
                if won:
                    logger.info(
                        "Stored %s result for %s, awaiting %s",
                        report.branch.value, key, report.branch.sibling.value,
                    )
                    return JoinOutcome.STORED
                continue

            won = await self.db.compare_and_set_join_entry(
                key,
                entry.version,
                {column: result_wire, "state": STATE_COMPLETE},
                self.clock(),
            )
            if not won:
                continue

            completed = await self.db.get_join_entry(key)
            await self._forward(completed, STATE_DISPATCHED)
            return JoinOutcome.DISPATCHED

        raise CollaboratorFailure(
            "join-store", f"could not update {key} after {self.max_cas_attempts} attempts"
        )

    async def sweep(self, now: datetime | None = None) -> SweepReport:
        """Expire overdue joins, recover stuck ones and purge old tombstones."""
        now = now or self.clock()
        report = SweepReport()

        # A failing key is logged and retried next sweep; it never blocks later keys
        for entry in await self.db.list_join_entries(list(WAITING_STATES)):
            try:
                self._check_deadline(entry, now)
            except JoinTimeout as timeout:
                logger.warning("%s", timeout)
                try:
                    if await self._expire(entry, timeout, now):
                        report.timed_out.append(entry.key)
                except Exception as e:
                    logger.error("Sweep could not expire %s: %s", entry.key, e, exc_info=True)
                    report.failed.append(entry.key)

        stuck_before = now - self.join_timeout
        for entry in await self.db.list_join_entries([STATE_COMPLETE], updated_before=stuck_before):
            logger.warning("Re-forwarding %s, stuck in complete since %s", entry.key, entry.updated_at)
            try:
                await self._forward(entry, STATE_TIMED_OUT if entry.partial else STATE_DISPATCHED)
            except Exception as e:
                logger.error("Sweep could not re-forward %s: %s", entry.key, e, exc_info=True)
                report.failed.append(entry.key)
                continue
            report.recovered.append(entry.key)

        report.purged = await self.db.purge_join_entries(
            list(TERMINAL_STATES), updated_before=now - self.dedup_ttl
        )

        if report.timed_out or report.recovered or report.purged or report.failed:
            logger.info(
                "Sweep: timed_out=%d recovered=%d purged=%d failed=%d",
                len(report.timed_out), len(report.recovered), report.purged, len(report.failed),
            )
        return report

    def _check_deadline(self, entry: JoinEntry, now: datetime) -> None:
        waited = now - entry.fan_out_started_at
        if waited >= self.join_timeout:
            missing = [b.value for b in Branch if getattr(entry, b.value) is None]
            raise JoinTimeout(entry.key, missing, waited.total_seconds())

    async def _expire(self, entry: JoinEntry, timeout: JoinTimeout, now: datetime) -> bool:
        """Fill missing branches with degraded defaults and forward as partial."""
        changes: dict[str, Any] = {"state": STATE_COMPLETE, "partial": True}
        for name in timeout.missing:
            branch = Branch(name)
            changes[_COLUMNS[branch]] = _DEGRADED[branch](now).to_wire()

        won = await self.db.compare_and_set_join_entry(entry.key, entry.version, changes, now)
        if not won:
            # A branch landed meanwhile; the next sweep re-evaluates this key
            logger.info("Timeout for %s lost to a concurrent update", entry.key)
            return False

        expired = await self.db.get_join_entry(entry.key)
        await self._forward(expired, STATE_TIMED_OUT)
        return True

    def _build(self, entry: JoinEntry) -> EnrichedRecord:
        analysis = AnalysisRecord.model_validate(entry.analysis)
        return EnrichedRecord.build(
            analysis,
            VerificationResult.model_validate(entry.verification),
            QCResult.model_validate(entry.qc),
            partial=entry.partial,
        )

    async def _forward(self, entry: JoinEntry, final_state: str) -> EnrichedRecord:
        """Dispatch a complete entry, then record the terminal state and evict payload."""
        enriched = self._build(entry)
        await self.dispatch(enriched)

        for _ in range(self.max_cas_attempts):
            won = await self.db.compare_and_set_join_entry(
                entry.key,
                entry.version,
                {
                    "state": final_state,
                    "analysis_json": None,
                    "verification_json": None,
                    "qc_json": None,
                },
                self.clock(),
            )
            if won:
                logger.info("Join %s -> %s (partial=%s)", entry.key, final_state, entry.partial)
                return enriched
            entry = await self.db.get_join_entry(entry.key)
            if entry is None or entry.state in TERMINAL_STATES:
                return enriched

        raise CollaboratorFailure(
            "join-store", f"could not record {final_state} for {entry.key}"
        )
