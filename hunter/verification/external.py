"""External fact check: source vetting plus corroboration.

    confidence = round_half_up(reputation_weight * reputation
                               + corroboration_weight * min(sources, N) * 10)
"""

import math
import re
from datetime import datetime

from ..config import ConfidencePolicy
from ..logging_config import get_logger
from ..models.records import AnalysisRecord, VerificationResult
from .reputation import SourceVetter, domain_from_url
from .search import ExtractedFacts, Triangulator

logger = get_logger(__name__)

INVESTMENT_PATTERN = re.compile(r"\$\d+(?:\.\d+)?[MB]")


def extract_facts(analysis: AnalysisRecord) -> ExtractedFacts:
    match = INVESTMENT_PATTERN.search(analysis.summary)
    return ExtractedFacts(
        company_name=analysis.company_name,
        investment=match.group(0) if match else None,
        region=analysis.region,
    )


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def confidence_score(
    reputation: float,
    corroborating_sources: int,
    policy: ConfidencePolicy | None = None,
) -> int:
    """Combine reputation and corroboration into a 0-100 score."""
    policy = policy or ConfidencePolicy()
    capped = min(corroborating_sources, policy.max_corroborating_sources)
    raw = (
        policy.reputation_weight * reputation
        + policy.corroboration_weight * capped * policy.points_per_source
    )
    return max(0, min(100, round_half_up(raw)))


class ExternalFactChecker:
    """Verification branch A."""

    def __init__(
        self,
        vetter: SourceVetter,
        triangulator: Triangulator,
        policy: ConfidencePolicy | None = None,
    ):
        self.vetter = vetter
        self.triangulator = triangulator
        self.policy = policy or ConfidencePolicy()

    async def check(self, analysis: AnalysisRecord) -> VerificationResult:
        reputation = await self.vetter.vet(analysis.source_url)
        facts = extract_facts(analysis)
        triangulation = await self.triangulator.corroborate(
            facts, domain_from_url(analysis.source_url)
        )
        score = confidence_score(reputation, triangulation.count, self.policy)

        logger.info(
            "Fact check %s: reputation=%.1f sources=%d confidence=%d",
            analysis.key, reputation, triangulation.count, score,
        )
        return VerificationResult(
            confidence_score=score,
            source_reputation_score=reputation,
            corroborating_sources=triangulation.count,
            corroborating_urls=triangulation.urls,
            checked_at=datetime.now(),
        )
