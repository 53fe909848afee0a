"""Extraction prompt template and model-output parsing."""

import asyncio
import json
import re
from pathlib import Path

from ..config import DEFAULT_PROMPT_PATH
from ..logging_config import get_logger

logger = get_logger(__name__)

PLACEHOLDER = "{{DOCUMENT_TEXT}}"


class PromptTemplateCache:
    """Prompt template loaded once per process.

    Concurrent first callers share a single file read: the lock is taken
    only while the template is missing and the check is repeated inside it.
    """

    def __init__(self, path: Path = DEFAULT_PROMPT_PATH):
        self.path = Path(path)
        self._template: str | None = None
        self._lock = asyncio.Lock()
        self.loads = 0

    async def get(self) -> str:
        if self._template is not None:
            return self._template
        async with self._lock:
            if self._template is None:
                self._template = await asyncio.to_thread(self.path.read_text, encoding="utf-8")
                self.loads += 1
                logger.info("Loaded prompt template %s (%d chars)", self.path, len(self._template))
        return self._template

    async def render(self, document_text: str) -> str:
        template = await self.get()
        return template.replace(PLACEHOLDER, document_text)


_cache: PromptTemplateCache | None = None


def get_prompt_cache(path: Path = DEFAULT_PROMPT_PATH) -> PromptTemplateCache:
    """Process-wide template cache for the given path."""
    global _cache
    if _cache is None or _cache.path != Path(path):
        _cache = PromptTemplateCache(path)
    return _cache


def parse_model_json(response: str) -> dict | None:
    """Parse a JSON object from a model response with fallbacks."""
    if not response or not isinstance(response, str):
        return None

    # Strip markdown code blocks
    cleaned = re.sub(r"```(?:json)?\s*", "", response).strip()
    cleaned = re.sub(r"```\s*$", "", cleaned).strip()

    # Whole response
    try:
        parsed = json.loads(cleaned)
        if isinstance(parsed, dict):
            return parsed
    except (json.JSONDecodeError, ValueError):
        logger.debug("Whole-response JSON parse failed, trying embedded object")

    # First { to last }
    match = re.search(r"\{.*\}", cleaned, re.DOTALL)
    if match:
        try:
            parsed = json.loads(match.group())
            if isinstance(parsed, dict):
                return parsed
        except json.JSONDecodeError:
            logger.debug("Embedded JSON object did not parse")

    return None
