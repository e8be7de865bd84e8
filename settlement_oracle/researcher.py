"""Web-search grounding for reasoning backends without a native search tool.

Runs a Brave Search query and formats the snippets as a prompt section.
"""

import logging

import httpx
from pydantic import BaseModel

logger = logging.getLogger(__name__)

BRAVE_SEARCH_URL = "https://api.search.brave.com/res/v1/web/search"
MAX_SEARCH_RESULTS = 5
FETCH_TIMEOUT = 15.0


class SearchResult(BaseModel):
    """A single web search result snippet."""
    title: str
    url: str
    snippet: str


def to_prompt_section(results: list[SearchResult]) -> str:
    """Format search results as a prompt section."""
    if not results:
        return "No web search results available."
    lines = ["### Web Search Results"]
    for r in results:
        lines.append(f"- **{r.title}** ({r.url})\n  {r.snippet}")
    return "\n".join(lines)


async def brave_search(client: httpx.AsyncClient, query: str, api_key: str | None) -> list[SearchResult]:
    """Run a web search via Brave Search API. Returns [] on any failure."""
    if not api_key:
        logger.warning("BRAVE_API_KEY not set, skipping web search")
        return []

    try:
        resp = await client.get(
            BRAVE_SEARCH_URL,
            params={"q": query, "count": MAX_SEARCH_RESULTS},
            headers={"X-Subscription-Token": api_key, "Accept": "application/json"},
            timeout=FETCH_TIMEOUT,
        )
        resp.raise_for_status()
        data = resp.json()
    except (httpx.HTTPError, ValueError) as e:
        logger.warning("Brave search failed for '%s': %s", query, e)
        return []

    results = []
    for item in data.get("web", {}).get("results", [])[:MAX_SEARCH_RESULTS]:
        results.append(SearchResult(
            title=item.get("title", ""),
            url=item.get("url", ""),
            snippet=item.get("description", ""),
        ))
    return results


async def search_context(query: str, api_key: str | None) -> str:
    """Run one search and return it formatted for a prompt."""
    async with httpx.AsyncClient() as client:
        results = await brave_search(client, query, api_key)
    logger.info("Search grounding: %d results for '%s'", len(results), query)
    return to_prompt_section(results)
