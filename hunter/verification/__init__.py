"""Verification branches: external fact check (A) and internal QC (B)."""

from .external import ExternalFactChecker, confidence_score, extract_facts
from .qc import BUSINESS_RULES, TOTAL_RULES, InternalQualityControl, check_logical_consistency, quality_score
from .reputation import DomainReputationService, ReputationService, SourceVetter, domain_from_url
from .search import ExtractedFacts, StaticTriangulator, Triangulator, TriangulationResult, WebSearchTriangulator
from .tone import ModelToneAnalyzer, StaticToneAnalyzer, ToneAnalyzer

__all__ = [
    "BUSINESS_RULES",
    "DomainReputationService",
    "ExternalFactChecker",
    "ExtractedFacts",
    "InternalQualityControl",
    "ModelToneAnalyzer",
    "ReputationService",
    "SourceVetter",
    "StaticToneAnalyzer",
    "StaticTriangulator",
    "TOTAL_RULES",
    "ToneAnalyzer",
    "Triangulator",
    "TriangulationResult",
    "WebSearchTriangulator",
    "check_logical_consistency",
    "confidence_score",
    "domain_from_url",
    "extract_facts",
    "quality_score",
]
