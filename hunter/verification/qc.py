"""Internal quality control: business rules, logical consistency and tone.

Score:
    quality = max(0, 100 - 10 * failed_rules
                         - 20 * (consistency failed)
                         - 10 * (tone failed))
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from ..logging_config import get_logger
from ..models.records import AnalysisRecord, CheckStatus, QCResult
from .tone import ToneAnalyzer

logger = get_logger(__name__)

RULE_PENALTY = 10
CONSISTENCY_PENALTY = 20
TONE_PENALTY = 10


@dataclass(frozen=True)
class BusinessRule:
    """A named predicate an analysis must satisfy."""

    name: str
    description: str
    check: Callable[[AnalysisRecord], bool]


BUSINESS_RULES: tuple[BusinessRule, ...] = (
    BusinessRule(
        name="new_construction_requires_construction_services",
        description="If opportunityType is 'New Construction', potentialNeed must include 'Construction Services'.",
        check=lambda a: a.opportunity_type != "New Construction"
        or "Construction Services" in a.potential_need,
    ),
    BusinessRule(
        name="technology_requires_high_score",
        description="If industry is 'Technology', opportunityScore must be greater than 7.",
        check=lambda a: a.industry != "Technology" or a.opportunity_score > 7,
    ),
    BusinessRule(
        name="summary_min_length",
        description="The summary must be at least 50 characters long.",
        check=lambda a: len(a.summary) >= 50,
    ),
)

RULE_NAMES: tuple[str, ...] = tuple(rule.name for rule in BUSINESS_RULES)

# rulesPassed is reported against this; it always matches the rule set
TOTAL_RULES = len(BUSINESS_RULES)

# (terms in the summary, opportunityType they contradict)
CONTRADICTIONS: tuple[tuple[tuple[str, ...], str], ...] = (
    (("expansion",), "Downsizing"),
    (("downsizing", "layoffs"), "Expansion"),
)


def run_business_rules(
    analysis: AnalysisRecord,
    rules: tuple[BusinessRule, ...] = BUSINESS_RULES,
) -> list[str]:
    """Evaluate the rule set; returns the names of failed rules."""
    return [rule.name for rule in rules if not rule.check(analysis)]


def check_logical_consistency(analysis: AnalysisRecord) -> CheckStatus:
    """Flag summaries that contradict the declared opportunity type."""
    summary = analysis.summary.lower()
    for terms, opportunity_type in CONTRADICTIONS:
        if analysis.opportunity_type == opportunity_type and any(t in summary for t in terms):
            return CheckStatus.FAILED
    return CheckStatus.PASSED


def quality_score(
    failed_rule_count: int,
    consistency: CheckStatus,
    tone: CheckStatus,
) -> int:
    score = 100 - RULE_PENALTY * failed_rule_count
    if consistency is CheckStatus.FAILED:
        score -= CONSISTENCY_PENALTY
    if tone is CheckStatus.FAILED:
        score -= TONE_PENALTY
    return max(0, score)


class InternalQualityControl:
    """Verification branch B."""

    def __init__(
        self,
        tone_analyzer: ToneAnalyzer,
        rules: tuple[BusinessRule, ...] = BUSINESS_RULES,
    ):
        self.tone_analyzer = tone_analyzer
        self.rules = rules

    async def check(self, analysis: AnalysisRecord) -> QCResult:
        failed = run_business_rules(analysis, self.rules)
        consistency = check_logical_consistency(analysis)
        tone = await self.tone_analyzer.analyze(analysis)
        score = quality_score(len(failed), consistency, tone)

        logger.info(
            "QC %s: score=%d failed=%s consistency=%s tone=%s",
            analysis.key, score, failed, consistency.value, tone.value,
        )
        return QCResult(
            quality_score=score,
            rules_passed=len(self.rules) - len(failed),
            rules_failed=len(failed),
            failed_rules=failed,
            logical_consistency=consistency,
            tone_analysis=tone,
            checked_at=datetime.now(),
        )
