"""Tone and sentiment gate for extracted analyses."""

import re
from typing import Protocol

from ..llm.client import ModelClient
from ..logging_config import get_logger
from ..models.records import AnalysisRecord, CheckStatus

logger = get_logger(__name__)

TONE_PROMPT = """You review business-opportunity summaries before they reach a sales team.

Fail the text if it is sensational, speculative clickbait, promotional copy, or
hostile in tone. Pass it if it reads as a factual business report.

Company: {company}
Summary: {summary}
Key quote: {quote}

Answer with exactly one word: PASSED or FAILED."""


class ToneAnalyzer(Protocol):
    """Passed/Failed tone gate."""

    async def analyze(self, analysis: AnalysisRecord) -> CheckStatus: ...


class StaticToneAnalyzer:
    """Always returns the configured verdict (offline runs and tests)."""

    def __init__(self, verdict: CheckStatus = CheckStatus.PASSED):
        self.verdict = verdict

    async def analyze(self, analysis: AnalysisRecord) -> CheckStatus:
        return self.verdict


class ModelToneAnalyzer:
    """Asks the generative model for a one-word tone verdict.

    An answer that is neither PASSED nor FAILED counts as FAILED, so an
    unusable verdict never passes a record.
    """

    def __init__(self, model: ModelClient):
        self.model = model

    async def analyze(self, analysis: AnalysisRecord) -> CheckStatus:
        response = await self.model.generate(
            TONE_PROMPT.format(
                company=analysis.company_name,
                summary=analysis.summary,
                quote=analysis.key_quote,
            )
        )
        match = re.search(r"\b(PASSED|FAILED)\b", response.upper())
        if not match:
            logger.warning("Unusable tone verdict for %s: %r", analysis.key, response[:100])
            return CheckStatus.FAILED
        return CheckStatus.PASSED if match.group(1) == "PASSED" else CheckStatus.FAILED
