"""Extraction stage: document -> AnalysisRecord -> recorded fan-out."""

import asyncio

from ..bus import TOPIC_EXTERNAL_VERIFICATION, TOPIC_INTERNAL_QC, Message, MessageBus
from ..contracts import validate
from ..errors import ContractViolation
from ..join import JoinCoordinator
from ..llm import ModelClient
from ..logging_config import get_logger
from ..models.records import AnalysisRecord, CandidateDocument
from .prompt import PromptTemplateCache, parse_model_json

logger = get_logger(__name__)


class ExtractionStage:
    """Turns a candidate document into a validated AnalysisRecord.

    Nothing is published unless the model output parses and validates.
    A successful extraction is recorded with the join coordinator before
    it is published to the two verification branches.
    """

    def __init__(
        self,
        model: ModelClient,
        prompts: PromptTemplateCache,
        join: JoinCoordinator,
        bus: MessageBus,
    ):
        self.model = model
        self.prompts = prompts
        self.join = join
        self.bus = bus

    async def extract(self, document: CandidateDocument) -> AnalysisRecord:
        """Run the model over one document.

        Raises:
            ContractViolation: unparseable or invalid model output
            CollaboratorFailure: model service failure
        """
        prompt = await self.prompts.render(document.text)
        response = await self.model.generate(prompt)

        data = parse_model_json(response)
        if data is None:
            logger.warning("Model output for %s is not JSON: %r", document.source_url, response[:200])
            raise ContractViolation("analysis_record", ["<root>"], "model output is not a JSON object")

        # The identity key is the document's URL, whatever the model echoed
        if data.get("sourceURL") != document.source_url:
            logger.debug(
                "Replacing model sourceURL %r with %s", data.get("sourceURL"), document.source_url
            )
        data["sourceURL"] = document.source_url

        return validate(data, "analysis_record")

    async def fan_out(self, analysis: AnalysisRecord) -> None:
        """Record the fan-out, then publish to both branches concurrently."""
        await self.join.open(analysis)
        payload = analysis.to_wire()
        await asyncio.gather(
            self.bus.publish(TOPIC_EXTERNAL_VERIFICATION, payload, key=analysis.key),
            self.bus.publish(TOPIC_INTERNAL_QC, payload, key=analysis.key),
        )
        logger.info("Published analysis for %s (%s) to both branches", analysis.company_name, analysis.key)

    async def process(self, document: CandidateDocument) -> AnalysisRecord:
        analysis = await self.extract(document)
        await self.fan_out(analysis)
        return analysis

    async def handle(self, message: Message) -> None:
        """Bus handler for the documents topic."""
        document = validate(message.payload, "candidate_document")
        await self.process(document)
