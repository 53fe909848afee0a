"""Generative model collaborator."""

from .client import ClaudeModelClient, ModelClient, agent_env, get_api_key

__all__ = ["ClaudeModelClient", "ModelClient", "agent_env", "get_api_key"]
