"""Pipeline wiring: stage handlers on the bus plus the timeout sweeper.

    documents -> extraction -> {analysis.external, analysis.qc}
              -> branch.results -> join -> decision
              -> final.approved | final.rejected | manual review queue
"""

import asyncio
import contextlib
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

from .bus import (
    TOPIC_BRANCH_RESULTS,
    TOPIC_DOCUMENTS,
    TOPIC_EXTERNAL_VERIFICATION,
    TOPIC_INTERNAL_QC,
    InProcessBus,
    Message,
    MessageBus,
)
from .config import PipelineConfig
from .contracts import validate
from .decision import DecisionEngine
from .extraction import ExtractionStage, PromptTemplateCache, get_prompt_cache
from .join import JoinCoordinator
from .llm import ClaudeModelClient, ModelClient
from .logging_config import get_logger
from .models.records import Branch, BranchReport, CandidateDocument
from .review import ManualReviewService
from .storage import PipelineDatabase
from .verification import (
    DomainReputationService,
    ExternalFactChecker,
    InternalQualityControl,
    ModelToneAnalyzer,
    ReputationService,
    SourceVetter,
    ToneAnalyzer,
    Triangulator,
    WebSearchTriangulator,
)

logger = get_logger(__name__)


class Pipeline:
    """All stages of the opportunity pipeline bound to one store and bus."""

    def __init__(
        self,
        config: PipelineConfig,
        db: PipelineDatabase,
        bus: MessageBus,
        model: ModelClient,
        reputation: ReputationService | None = None,
        triangulator: Triangulator | None = None,
        tone_analyzer: ToneAnalyzer | None = None,
        prompts: PromptTemplateCache | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.config = config
        self.db = db
        self.bus = bus

        self.decision = DecisionEngine(db, bus, clock=clock)
        self.join = JoinCoordinator(
            db,
            self.decision.dispatch,
            join_timeout_seconds=config.join_timeout_seconds,
            dedup_ttl_seconds=config.dedup_ttl_seconds,
            clock=clock,
        )
        self.extraction = ExtractionStage(
            model,
            prompts or get_prompt_cache(config.prompt_path),
            self.join,
            bus,
        )
        self.fact_checker = ExternalFactChecker(
            SourceVetter(
                reputation or DomainReputationService(config.neutral_reputation),
                allowlist=config.domain_allowlist,
                denylist=config.domain_denylist,
            ),
            triangulator or WebSearchTriangulator(model=config.model),
            config.confidence,
        )
        self.qc = InternalQualityControl(tone_analyzer or ModelToneAnalyzer(model))
        self.review = ManualReviewService(db, clock=clock)

        self._started = False
        self._sweeper: asyncio.Task | None = None

    async def start(self, sweep: bool = True) -> None:
        """Subscribe every stage handler; optionally start the sweeper."""
        if self._started:
            return
        self._started = True

        await self.bus.subscribe(TOPIC_DOCUMENTS, self.extraction.handle)
        await self.bus.subscribe(TOPIC_EXTERNAL_VERIFICATION, self.handle_external)
        await self.bus.subscribe(TOPIC_INTERNAL_QC, self.handle_qc)
        await self.bus.subscribe(TOPIC_BRANCH_RESULTS, self.handle_branch_result)

        if sweep:
            self._sweeper = asyncio.create_task(self._sweep_loop())
        logger.info("Pipeline started (sweeper=%s)", sweep)

    async def stop(self) -> None:
        if self._sweeper:
            self._sweeper.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._sweeper
            self._sweeper = None
        drain = getattr(self.bus, "drain", None)
        if drain:
            await drain()
        logger.info("Pipeline stopped")

    async def submit(self, document: CandidateDocument | dict[str, Any]) -> str:
        """Validate a candidate document and publish it; returns the message id."""
        document = validate(document, "candidate_document")
        return await self.bus.publish(
            TOPIC_DOCUMENTS, document.to_wire(), key=document.source_url
        )

    async def handle_external(self, message: Message) -> None:
        analysis = validate(message.payload, "analysis_record")
        verification = await self.fact_checker.check(analysis)
        await self._report(BranchReport(branch=Branch.VERIFICATION, analysis=analysis, verification=verification))

    async def handle_qc(self, message: Message) -> None:
        analysis = validate(message.payload, "analysis_record")
        qc = await self.qc.check(analysis)
        await self._report(BranchReport(branch=Branch.QC, analysis=analysis, qc=qc))

    async def handle_branch_result(self, message: Message) -> None:
        report = validate(message.payload, "branch_report")
        outcome = await self.join.accept(report)
        logger.debug("Join %s <- %s: %s", report.key, report.branch.value, outcome.value)

    async def _report(self, report: BranchReport) -> None:
        await self.bus.publish(TOPIC_BRANCH_RESULTS, report.to_wire(), key=report.key)

    async def _sweep_loop(self) -> None:
        interval = self.config.sweep_interval_seconds
        while True:
            await asyncio.sleep(interval)
            try:
                await self.join.sweep()
            except Exception as e:
                logger.error("Join sweep failed: %s", e, exc_info=True)


@asynccontextmanager
async def open_pipeline(
    config: PipelineConfig | None = None,
    model: ModelClient | None = None,
    sweep: bool = True,
    **collaborators: Any,
) -> AsyncIterator[Pipeline]:
    """Connect the store, build an in-process bus and start the pipeline.

    Usage:
        async with open_pipeline(config) as pipeline:
            await pipeline.submit(document)
    """
    config = config or PipelineConfig.from_env()
    db = PipelineDatabase(config.db_path)
    await db.connect()
    bus = InProcessBus(
        max_deliveries=config.max_deliveries,
        retry_backoff_seconds=config.retry_backoff_seconds,
    )
    pipeline = Pipeline(
        config,
        db,
        bus,
        model or ClaudeModelClient(model=config.model),
        **collaborators,
    )
    try:
        await pipeline.start(sweep=sweep)
        yield pipeline
    finally:
        await pipeline.stop()
        await db.close()
