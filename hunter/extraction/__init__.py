"""Extraction stage."""

from .prompt import PLACEHOLDER, PromptTemplateCache, get_prompt_cache, parse_model_json
from .stage import ExtractionStage

__all__ = [
    "PLACEHOLDER",
    "ExtractionStage",
    "PromptTemplateCache",
    "get_prompt_cache",
    "parse_model_json",
]
