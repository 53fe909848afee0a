"""
Pydantic models for API responses.

Request bodies are pipeline records and are validated by the hunter
contract validator, so only the API-specific shapes live here.
"""
from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    uptime: float


class DocumentAccepted(BaseModel):
    """A candidate document queued on the documents topic."""
    status: str = "accepted"
    message_id: str = Field(serialization_alias="messageId")
    key: str


class ContractError(BaseModel):
    """Body of a 422 raised by the contract validator."""
    schema_name: str = Field(serialization_alias="schema")
    fields: list[str]
    message: str


class PipelineStats(BaseModel):
    """Counts across the correlation table, decisions and review queue."""
    join_states: dict[str, int]
    decisions: dict[str, int]
    partial_decisions: int
    pending_reviews: int
    corrections: int
