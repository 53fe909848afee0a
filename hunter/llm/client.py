"""Generative model client using the Claude Agent SDK."""

import os
import subprocess
from pathlib import Path
from typing import Protocol

from claude_agent_sdk import AssistantMessage, ClaudeAgentOptions, TextBlock, query

from ..errors import CollaboratorFailure
from ..logging_config import get_logger

logger = get_logger(__name__)


def get_api_key() -> str | None:
    """Get the API key from Claude Code's config or environment."""
    # First check environment
    if api_key := os.environ.get("ANTHROPIC_API_KEY"):
        return api_key

    # Try Claude Code's get-api-key.sh script
    script_path = Path.home() / ".claude" / "get-api-key.sh"
    if script_path.exists():
        try:
            result = subprocess.run(
                ["bash", str(script_path)],
                capture_output=True,
                text=True,
                timeout=5,
            )
            if result.returncode == 0 and result.stdout.strip():
                return result.stdout.strip()
        except (OSError, subprocess.SubprocessError):
            logger.debug("API key helper failed: %s", script_path, exc_info=True)

    return None


def agent_env() -> dict[str, str]:
    """Environment passed to the SDK subprocess."""
    env = {}
    if api_key := get_api_key():
        env["ANTHROPIC_API_KEY"] = api_key
    return env


class ModelClient(Protocol):
    """Opaque text-in / text-out model service."""

    async def generate(self, prompt: str) -> str: ...


class ClaudeModelClient:
    """Single-turn, tool-less Claude call.

    Any SDK error or an empty response raises CollaboratorFailure so the
    transport redelivers the message.
    """

    def __init__(self, model: str = "sonnet", system_prompt: str | None = None):
        self.model = model
        self.system_prompt = system_prompt

    async def generate(self, prompt: str) -> str:
        options = ClaudeAgentOptions(
            model=self.model,
            max_turns=1,  # Single turn, no tools
            allowed_tools=[],
            system_prompt=self.system_prompt,
            env=agent_env(),
        )

        response_text = ""
        try:
            async for message in query(prompt=prompt, options=options):
                if isinstance(message, AssistantMessage):
                    for block in message.content:
                        if isinstance(block, TextBlock):
                            response_text += block.text
        except Exception as e:
            logger.error("Model call failed (%s): %s", self.model, e, exc_info=True)
            raise CollaboratorFailure("model", str(e)) from e

        if not response_text.strip():
            raise CollaboratorFailure("model", "empty response")

        logger.debug("Model %s returned %d chars", self.model, len(response_text))
        return response_text
