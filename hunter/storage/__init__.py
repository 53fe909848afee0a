"""Durable storage for pipeline state."""

from .database import JoinEntry, PipelineDatabase, StoredDecision

__all__ = ["JoinEntry", "PipelineDatabase", "StoredDecision"]
