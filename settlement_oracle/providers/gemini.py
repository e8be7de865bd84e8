"""Google Gemini backend for the reasoning service, with Google Search grounding."""

import logging

from google import genai
from google.genai import types

from ..utils import dump_trace
from . import ReasoningResponse

logger = logging.getLogger(__name__)

PROVIDER_NAME = "gemini"
DEFAULT_MODEL = "gemini-2.5-flash"


class GeminiReasoner:
    """Query Gemini, optionally grounded with the built-in Google Search tool."""

    name = PROVIDER_NAME

    def __init__(self, api_key: str, model: str | None = None):
        if not api_key:
            raise ValueError("GEMINI_API_KEY environment variable is required")
        self.model = model or DEFAULT_MODEL
        self.client = genai.Client(api_key=api_key)

    async def generate(
        self,
        instructions: str,
        prompt: str,
        search_query: str | None = None,
    ) -> ReasoningResponse:
        config = types.GenerateContentConfig(
            system_instruction=instructions,
            temperature=0.1,
            max_output_tokens=2048,
            tools=[types.Tool(google_search=types.GoogleSearch())] if search_query else None,
        )

        logger.info("Querying %s (%s)...", PROVIDER_NAME, self.model)

        response = await self.client.aio.models.generate_content(
            model=self.model,
            contents=prompt,
            config=config,
        )

        raw = (response.text or "").strip()
        logger.debug("Raw response from %s: %s", PROVIDER_NAME, raw)
        return ReasoningResponse(text=raw, trace=dump_trace(response))
