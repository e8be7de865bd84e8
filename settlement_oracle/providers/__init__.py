"""Reasoning-service backends.

Every backend exposes ``generate(instructions, prompt, search_query=None)``
and returns a ``ReasoningResponse`` whose text is expected to hold one JSON
object, possibly wrapped in markdown or prose.
"""

from typing import Any, Protocol

from pydantic import BaseModel

from ..config import Settings
from ..errors import ConfigurationError


class ReasoningResponse(BaseModel):
    text: str
    trace: dict[str, Any] = {}


class Reasoner(Protocol):
    name: str

    async def generate(
        self,
        instructions: str,
        prompt: str,
        search_query: str | None = None,
    ) -> ReasoningResponse: ...


def build_reasoner(settings: Settings) -> Reasoner | None:
    """Construct the configured backend, or None when no API key is set."""
    if not settings.reasoning_configured:
        return None

    provider = settings.reasoning_provider
    if provider == "gemini":
        from .gemini import GeminiReasoner
        return GeminiReasoner(settings.reasoning_api_key, settings.reasoning_model)
    if provider == "claude":
        from .claude import ClaudeReasoner
        return ClaudeReasoner(settings.reasoning_api_key, settings.reasoning_model, settings.brave_api_key)
    if provider == "openai":
        from .openai import OpenAIReasoner
        return OpenAIReasoner(
            settings.reasoning_api_key,
            settings.reasoning_model,
            settings.openai_base_url,
            settings.brave_api_key,
        )
    raise ConfigurationError(f"Unknown reasoning provider: {provider}")
