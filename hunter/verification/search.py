"""Corroboration search for extracted facts."""

import re
from dataclasses import dataclass, field
from typing import Protocol

from claude_agent_sdk import AssistantMessage, ClaudeAgentOptions, TextBlock, query

from ..errors import CollaboratorFailure
from ..llm.client import agent_env
from ..logging_config import get_logger
from .reputation import domain_from_url

logger = get_logger(__name__)


@dataclass(frozen=True)
class ExtractedFacts:
    """The claims Branch A tries to corroborate."""

    company_name: str
    investment: str | None
    region: str


@dataclass
class TriangulationResult:
    """Independent sources found for a set of facts."""

    count: int
    urls: list[str] = field(default_factory=list)


class Triangulator(Protocol):
    async def corroborate(self, facts: ExtractedFacts, source_domain: str) -> TriangulationResult: ...


def extract_urls(text: str) -> list[str]:
    """Distinct URLs in order of appearance, trailing punctuation removed."""
    url_pattern = r'https?://[^\s<>"{}|\\^`\[\])]*'
    cleaned: list[str] = []
    for url in re.findall(url_pattern, text):
        url = url.rstrip('.,;:!?)')
        if url and url not in cleaned:
            cleaned.append(url)
    return cleaned


def independent_urls(urls: list[str], source_domain: str) -> list[str]:
    """Drop URLs on the source's own domain; one URL per distinct domain."""
    seen: set[str] = set()
    kept = []
    for url in urls:
        domain = domain_from_url(url)
        if not domain or domain == source_domain or domain in seen:
            continue
        seen.add(domain)
        kept.append(url)
    return kept


class WebSearchTriangulator:
    """Searches the web through the model SDK's WebSearch tool."""

    def __init__(self, model: str = "sonnet", max_results: int = 10):
        self.model = model
        self.max_results = max_results

    async def corroborate(self, facts: ExtractedFacts, source_domain: str) -> TriangulationResult:
        claim = f"{facts.company_name} {facts.investment or ''} investment in {facts.region}"
        prompt = f"""Search the web for independent news coverage of: {claim.strip()}

List every article that reports this, one URL per line. Only include
articles that clearly describe the same company and project."""

        options = ClaudeAgentOptions(
            model=self.model,
            max_turns=5,  # Allow multiple search iterations
            allowed_tools=["WebSearch"],
            env=agent_env(),
        )

        text = ""
        try:
            async for message in query(prompt=prompt, options=options):
                if isinstance(message, AssistantMessage):
                    for block in message.content:
                        if isinstance(block, TextBlock):
                            text += block.text
        except Exception as e:
            logger.error("Corroboration search failed for %s: %s", facts.company_name, e, exc_info=True)
            raise CollaboratorFailure("search", str(e)) from e

        urls = independent_urls(extract_urls(text), source_domain)[: self.max_results]
        logger.info("Corroboration for %s: %d independent sources", facts.company_name, len(urls))
        return TriangulationResult(count=len(urls), urls=urls)


class StaticTriangulator:
    """Returns a fixed result (offline runs and tests)."""

    def __init__(self, result: TriangulationResult | None = None):
        self.result = result or TriangulationResult(count=0)

    async def corroborate(self, facts: ExtractedFacts, source_domain: str) -> TriangulationResult:
        return self.result
