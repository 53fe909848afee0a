"""
Shared store and pipeline for the API process.

One PipelineDatabase and one Pipeline per server process, created lazily
and torn down by the server lifespan.
"""
from typing import Any

from hunter.bus import InProcessBus
from hunter.config import PipelineConfig
from hunter.llm import ClaudeModelClient
from hunter.logging_config import get_logger
from hunter.pipeline import Pipeline
from hunter.storage import PipelineDatabase

logger = get_logger(__name__)

_config: PipelineConfig | None = None
_db_instance: PipelineDatabase | None = None
_pipeline: Pipeline | None = None
_pipeline_options: dict[str, Any] = {}


def configure_pipeline(**options: Any) -> None:
    """Collaborators (model, triangulator, tone_analyzer, ...) for the next pipeline."""
    _pipeline_options.clear()
    _pipeline_options.update(options)


def get_config() -> PipelineConfig:
    global _config
    if _config is None:
        _config = PipelineConfig.from_env()
    return _config


async def get_db() -> PipelineDatabase:
    """Get or create the global database instance."""
    global _db_instance
    if _db_instance is None:
        _db_instance = PipelineDatabase(get_config().db_path)
        await _db_instance.connect()
    return _db_instance


async def get_pipeline() -> Pipeline:
    """Get or create the global pipeline, subscribed and sweeping."""
    global _pipeline
    if _pipeline is None:
        config = get_config()
        db = await get_db()
        options = dict(_pipeline_options)
        model = options.pop("model", None) or ClaudeModelClient(model=config.model)
        bus = InProcessBus(
            max_deliveries=config.max_deliveries,
            retry_backoff_seconds=config.retry_backoff_seconds,
        )
        _pipeline = Pipeline(config, db, bus, model, **options)
        await _pipeline.start(sweep=True)
    return _pipeline


async def close_db():
    """Stop the pipeline and close the global database instance."""
    global _config, _db_instance, _pipeline
    if _pipeline:
        await _pipeline.stop()
        _pipeline = None
    if _db_instance:
        await _db_instance.close()
        _db_instance = None
    _config = None
