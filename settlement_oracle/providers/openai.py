"""OpenAI backend for the reasoning service."""

import logging

import openai

from ..researcher import search_context
from ..utils import dump_trace
from . import ReasoningResponse

logger = logging.getLogger(__name__)

PROVIDER_NAME = "openai"
DEFAULT_MODEL = "gpt-5.2"


class OpenAIReasoner:
    """Query an OpenAI-compatible chat endpoint; search grounding via Brave Search."""

    name = PROVIDER_NAME

    def __init__(
        self,
        api_key: str,
        model: str | None = None,
        base_url: str | None = None,
        brave_api_key: str | None = None,
    ):
        if not api_key:
            raise ValueError("OPENAI_API_KEY environment variable is required")
        self.model = model or DEFAULT_MODEL
        self.brave_api_key = brave_api_key
        self.client = openai.AsyncOpenAI(api_key=api_key, **({"base_url": base_url} if base_url else {}))

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

        response = await self.client.chat.completions.create(
            model=self.model,
            temperature=0.1,
            max_tokens=1024,
            messages=[
                {"role": "system", "content": instructions},
                {"role": "user", "content": prompt},
            ],
        )

        raw = (response.choices[0].message.content or "").strip()
        logger.debug("Raw response from %s: %s", PROVIDER_NAME, raw)
        return ReasoningResponse(text=raw, trace=dump_trace(response))
