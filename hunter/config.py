"""Configuration for the opportunity pipeline."""

import os
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_PROMPT_PATH = Path(__file__).parent / "extraction" / "prompt.txt"


def _env_list(name: str, default: list[str]) -> list[str]:
    raw = os.environ.get(name)
    if raw is None:
        return list(default)
    return [item.strip().lower() for item in raw.split(",") if item.strip()]


@dataclass
class ConfidencePolicy:
    """Weights for the external fact-check confidence score.

    confidence = reputation_weight * reputation
               + corroboration_weight * min(sources, max_corroborating_sources) * 10
    """

    reputation_weight: float = 0.5
    corroboration_weight: float = 0.5
    max_corroborating_sources: int = 10
    points_per_source: int = 10


@dataclass
class PipelineConfig:
    """Runtime settings for every pipeline stage."""

    # Storage
    db_path: str = "hunter.db"

    # Extraction
    model: str = "sonnet"
    prompt_path: Path = DEFAULT_PROMPT_PATH

    # Join coordinator
    join_timeout_seconds: float = 300.0  # 5 minutes waiting for a sibling branch
    dedup_ttl_seconds: float = 24 * 3600.0  # keep dispatched tombstones for a day
    sweep_interval_seconds: float = 30.0

    # Transport redelivery
    max_deliveries: int = 5
    retry_backoff_seconds: float = 0.5

    # Source vetting
    domain_allowlist: list[str] = field(
        default_factory=lambda: ["reuters.com", "bloomberg.com"]
    )
    domain_denylist: list[str] = field(
        default_factory=lambda: ["my-sensational-blog.net"]
    )
    neutral_reputation: float = 85.0

    confidence: ConfidencePolicy = field(default_factory=ConfidencePolicy)

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        """Create config from HUNTER_* environment variables."""
        defaults = cls()
        policy = ConfidencePolicy(
            reputation_weight=float(
                os.environ.get("HUNTER_REPUTATION_WEIGHT", defaults.confidence.reputation_weight)
            ),
            corroboration_weight=float(
                os.environ.get("HUNTER_CORROBORATION_WEIGHT", defaults.confidence.corroboration_weight)
            ),
            max_corroborating_sources=int(
                os.environ.get("HUNTER_MAX_CORROBORATING_SOURCES", defaults.confidence.max_corroborating_sources)
            ),
        )
        return cls(
            db_path=os.environ.get("HUNTER_DB_PATH", defaults.db_path),
            model=os.environ.get("HUNTER_MODEL", defaults.model),
            prompt_path=Path(os.environ.get("HUNTER_PROMPT_PATH", str(defaults.prompt_path))),
            join_timeout_seconds=float(
                os.environ.get("HUNTER_JOIN_TIMEOUT_SECONDS", defaults.join_timeout_seconds)
            ),
            dedup_ttl_seconds=float(
                os.environ.get("HUNTER_DEDUP_TTL_SECONDS", defaults.dedup_ttl_seconds)
            ),
            sweep_interval_seconds=float(
                os.environ.get("HUNTER_SWEEP_INTERVAL_SECONDS", defaults.sweep_interval_seconds)
            ),
            max_deliveries=int(os.environ.get("HUNTER_MAX_DELIVERIES", defaults.max_deliveries)),
            retry_backoff_seconds=float(
                os.environ.get("HUNTER_RETRY_BACKOFF_SECONDS", defaults.retry_backoff_seconds)
            ),
            domain_allowlist=_env_list("HUNTER_DOMAIN_ALLOWLIST", defaults.domain_allowlist),
            domain_denylist=_env_list("HUNTER_DOMAIN_DENYLIST", defaults.domain_denylist),
            neutral_reputation=float(
                os.environ.get("HUNTER_NEUTRAL_REPUTATION", defaults.neutral_reputation)
            ),
            confidence=policy,
        )
