"""Anthropic Claude backend for the reasoning service."""

import logging

import anthropic

from ..researcher import search_context
from ..utils import dump_trace
from . import ReasoningResponse

logger = logging.getLogger(__name__)

PROVIDER_NAME = "claude"
DEFAULT_MODEL = "claude-opus-4-5"


class ClaudeReasoner:
    """Query Claude; search grounding is supplied through Brave Search snippets."""

    name = PROVIDER_NAME

    def __init__(self, api_key: str, model: str | None = None, brave_api_key: str | None = None):
        if not api_key:
            raise ValueError("ANTHROPIC_API_KEY environment variable is required")
        self.model = model or DEFAULT_MODEL
        self.brave_api_key = brave_api_key
        self.client = anthropic.AsyncAnthropic(api_key=api_key)

    async def generate(
        self,
        instructions: str,
        prompt: str,
        search_query: str | None = None,
    ) -> ReasoningResponse:
        if search_query:
            evidence = await search_context(search_query, self.brave_api_key)
            prompt = f"{prompt}\n\n## Evidence\n{evidence}"

        logger.info("Querying %s (%s)...", PROVIDER_NAME, self.model)

        message = await self.client.messages.create(
            model=self.model,
            max_tokens=1024,
            temperature=0.1,
            system=instructions,
            messages=[{"role": "user", "content": prompt}],
        )

        raw = message.content[0].text.strip()
        logger.debug("Raw response from %s: %s", PROVIDER_NAME, raw)
        return ReasoningResponse(text=raw, trace=dump_trace(message))
