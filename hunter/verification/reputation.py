"""Source vetting: domain reputation with allow and deny lists."""

from typing import Protocol
from urllib.parse import urlparse

from ..logging_config import get_logger

logger = get_logger(__name__)


def domain_from_url(url: str) -> str:
    """Host of the URL, lower-cased, without a leading ``www.``."""
    host = (urlparse(url).hostname or "").lower()
    return host.removeprefix("www.")


def matches_domain(domain: str, patterns: list[str]) -> bool:
    """Suffix match: ``reuters.com`` matches ``uk.reuters.com`` but not ``notreuters.com``."""
    for pattern in patterns:
        pattern = pattern.lower()
        if domain == pattern or domain.endswith("." + pattern):
            return True
    return False


class ReputationService(Protocol):
    """Reputation lookup returning a score in [0, 100]."""

    async def score(self, domain: str) -> float: ...


class DomainReputationService:
    """Offline reputation lookup by domain-authority pattern tables.

    Unknown domains get the neutral default.
    """

    HIGH_REPUTATION_PATTERNS = [
        '.gov',
        'apnews.com',
        'ft.com',
        'wsj.com',
        'economist.com',
        'nytimes.com',
        'bbc.co.uk',
        'bbc.com',
        'sec.gov',
    ]

    MEDIUM_REPUTATION_PATTERNS = [
        'businesswire.com',
        'prnewswire.com',
        'globenewswire.com',
        'techcrunch.com',
        'forbes.com',
        'cnbc.com',
        'theguardian.com',
        'constructiondive.com',
    ]

    LOW_REPUTATION_PATTERNS = [
        'reddit.com',
        'twitter.com',
        'x.com',
        'facebook.com',
        'tiktok.com',
        'medium.com',
        'substack.com',
        'blogspot.com',
        'wordpress.com',
    ]

    SCORES = {
        'high': 95.0,
        'medium': 75.0,
        'low': 30.0,
    }

    def __init__(self, neutral_score: float = 85.0):
        self.neutral_score = neutral_score

    async def score(self, domain: str) -> float:
        domain = domain.lower()
        if self._matches(domain, self.HIGH_REPUTATION_PATTERNS):
            return self.SCORES['high']
        if self._matches(domain, self.MEDIUM_REPUTATION_PATTERNS):
            return self.SCORES['medium']
        if self._matches(domain, self.LOW_REPUTATION_PATTERNS):
            return self.SCORES['low']
        return self.neutral_score

    def _matches(self, domain: str, patterns: list[str]) -> bool:
        for pattern in patterns:
            if pattern.startswith('.'):
                if domain.endswith(pattern):
                    return True
            elif matches_domain(domain, [pattern]):
                return True
        return False


class SourceVetter:
    """Allow/deny lists in front of a reputation service."""

    def __init__(
        self,
        reputation: ReputationService,
        allowlist: list[str],
        denylist: list[str],
    ):
        self.reputation = reputation
        self.allowlist = allowlist
        self.denylist = denylist

    async def vet(self, source_url: str) -> float:
        """Reputation score in [0, 100] for the document's source."""
        domain = domain_from_url(source_url)
        if matches_domain(domain, self.allowlist):
            logger.debug("Allow-listed source: %s", domain)
            return 100.0
        if matches_domain(domain, self.denylist):
            logger.info("Deny-listed source: %s", domain)
            return 0.0
        score = await self.reputation.score(domain)
        return max(0.0, min(100.0, score))
