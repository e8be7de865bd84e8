"""Oracle classification: turn a market question into a resolution recipe.

The reasoning service decides whether a question can be answered by one of
the whitelisted data sources (DISCRETE) or needs AI reasoning (CONTIGUOUS).
Classification never fails market creation; every error degrades to a
Contiguous spec.
"""

import logging

from pydantic import BaseModel, ValidationError

from .providers import Reasoner
from .store import SpecStore
from .types import (
    Comparison,
    ContiguousOracleSpec,
    DiscreteOracleSpec,
    OracleCategory,
    OracleSource,
    OracleSpec,
)
from .utils import parse_llm_json, split_path

logger = logging.getLogger(__name__)

# Whitelist of trusted data sources, one per sourced category.
TRUSTED_SOURCES: dict[OracleCategory, OracleSource] = {
    OracleCategory.CRYPTO_PRICE: OracleSource(
        name="CoinGecko",
        endpoint="https://api.coingecko.com/api/v3/simple/price",
    ),
    OracleCategory.FOREX_RATE: OracleSource(
        name="ExchangeRate-API",
        endpoint="https://open.er-api.com/v6/latest/USD",
    ),
    OracleCategory.WEATHER: OracleSource(
        name="wttr.in",
        endpoint="https://wttr.in",
    ),
    OracleCategory.SPORTS_SCORE: OracleSource(
        name="TheSportsDB",
        endpoint="https://www.thesportsdb.com/api/v1/json/3/searchteams.php",
    ),
}

CLASSIFICATION_INSTRUCTIONS = """\
You are an oracle classifier for a prediction market.

Analyze the user's market question and determine if it can be resolved via a **DISCRETE** data source (API call) or requires **CONTIGUOUS** AI reasoning.

=== DISCRETE CATEGORIES ===

1. CRYPTO_PRICE: Cryptocurrency prices in USD
   - api_params: { "ids": "<coin_id>", "vs_currencies": "usd" }
   - coin_id examples: "bitcoin", "ethereum", "solana", "dogecoin", "cardano"
   - extraction_path: $.<coin_id>.usd (e.g., $.bitcoin.usd)

2. WEATHER: Current temperature (Celsius) for a city
   - api_params: { "city": "<City>" } (no spaces, use CamelCase, e.g. "NewYork", "London", "Tokyo")
   - extraction_path: $.current_condition[0].temp_C

3. FOREX_RATE: Currency exchange rates (base: USD)
   - api_params: {}
   - extraction_path: $.rates.<currency_code> (e.g., $.rates.EUR, $.rates.GBP)

4. SPORTS_SCORE: Did a team win their most recent game?
   - api_params: { "team_search": "<full team name>" }
   - extraction_path: $.results[0]
   - comparison: { "operator": "==", "target_value": true }
   - ONLY USE FOR: "Did X win their last game?" type questions
   - DO NOT USE FOR: Future games, predictions, or complex sports stats

5. DATE_EVENT: Questions that are answered purely by the calendar date.

=== CONTIGUOUS (AI Reasoning) ===
Category GENERAL_AI. Use for: Elections, company news, subjective predictions, complex multi-step queries, future events beyond simple price/weather.

=== OUTPUT FORMAT ===
Return VALID JSON ONLY:
{
  "type": "DISCRETE" | "CONTIGUOUS",
  "category": "CRYPTO_PRICE" | "FOREX_RATE" | "WEATHER" | "SPORTS_SCORE" | "DATE_EVENT" | "GENERAL_AI",
  "reason": "Brief explanation",
  "spec": {
    "natural_language_summary": "Human readable resolution logic",
    "extraction_path": "$.path.to.value",
    "comparison": { "operator": ">|<|>=|<=|==|!=", "target_value": <number_or_string_or_bool> },
    "resolution_timestamp": "ISO timestamp",
    "api_params": { ... }
  }
}

=== EXAMPLES ===

Q: "Is Bitcoin above $100,000?"
-> DISCRETE, CRYPTO_PRICE, extraction_path: $.bitcoin.usd, comparison: { ">", 100000 }, api_params: { "ids": "bitcoin", "vs_currencies": "usd" }

Q: "Is the temperature below 0°C in New York?"
-> DISCRETE, WEATHER, extraction_path: $.current_condition[0].temp_C, comparison: { "<", 0 }, api_params: { "city": "NewYork" }

Q: "Is EUR/USD above 1.10?"
-> DISCRETE, FOREX_RATE, extraction_path: $.rates.EUR, comparison: { ">", 1.10 }, api_params: {}

Q: "Did the Lakers win their last game?"
-> DISCRETE, SPORTS_SCORE, extraction_path: $.results[0], comparison: { "==", true }, api_params: { "team_search": "Los Angeles Lakers" }

Q: "Will the Lakers win tonight?" or "Will the Celtics win the championship?"
-> CONTIGUOUS, GENERAL_AI (future event, subjective - cannot use API)
"""


class Classification(BaseModel):
    """Tagged result of parsing a classifier response."""
    ok: bool
    spec: OracleSpec
    reason: str = ""
    error: str | None = None

    @classmethod
    def failed(cls, error: str) -> "Classification":
        return cls(ok=False, spec=ContiguousOracleSpec.classification_failed(), error=error)


def _build_discrete(category: OracleCategory, body: dict) -> DiscreteOracleSpec:
    source = TRUSTED_SOURCES[category]
    api_params = body.get("api_params") or {}
    if not isinstance(api_params, dict):
        raise ValueError("api_params must be an object")

    extraction_path = body.get("extraction_path") or "$"
    if not isinstance(extraction_path, str):
        raise ValueError("extraction_path must be a string")
    split_path(extraction_path)

    fields = {
        "category": category,
        "source": source.model_copy(update={
            "params": {**source.params, **{str(k): str(v) for k, v in api_params.items()}},
        }),
        "extraction_path": extraction_path,
    }
    if body.get("natural_language_summary"):
        fields["natural_language_summary"] = body["natural_language_summary"]
    if body.get("comparison"):
        fields["comparison"] = Comparison.model_validate(body["comparison"])
    if body.get("resolution_timestamp"):
        fields["resolution_timestamp"] = str(body["resolution_timestamp"])
    return DiscreteOracleSpec(**fields)


def parse_classification(raw: str) -> Classification:
    """Strictly parse a classifier response into a spec. Never raises."""
    try:
        data = parse_llm_json(raw)
    except ValueError as e:
        return Classification.failed(str(e))

    kind = data.get("type")
    reason = str(data.get("reason", ""))
    body = data.get("spec") or {}
    if not isinstance(body, dict):
        return Classification.failed("spec must be an object")

    if kind == "CONTIGUOUS":
        summary = body.get("natural_language_summary")
        try:
            spec = ContiguousOracleSpec(natural_language_summary=summary) if summary else ContiguousOracleSpec()
        except ValidationError as e:
            return Classification.failed(f"Invalid contiguous spec: {e}")
        return Classification(ok=True, spec=spec, reason=reason)

    if kind != "DISCRETE":
        return Classification.failed(f"Unknown classification type: {kind!r}")

    try:
        category = OracleCategory(data.get("category"))
    except ValueError:
        return Classification.failed(f"Unknown category: {data.get('category')!r}")

    if category not in TRUSTED_SOURCES:
        # No whitelisted source for this category, so it can only be reasoned about.
        return Classification(ok=True, spec=ContiguousOracleSpec(), reason=reason)

    try:
        spec = _build_discrete(category, body)
    except (ValidationError, ValueError) as e:
        return Classification.failed(f"Invalid discrete spec: {e}")

    return Classification(ok=True, spec=spec, reason=reason)


class OracleClassifier:
    def __init__(self, reasoner: Reasoner, specs: SpecStore):
        self.reasoner = reasoner
        self.specs = specs

    async def classify(self, question: str) -> OracleSpec:
        try:
            response = await self.reasoner.generate(
                CLASSIFICATION_INSTRUCTIONS,
                f'Market Question: "{question}"',
            )
            result = parse_classification(response.text)
        except Exception:
            logger.exception("Classification failed, defaulting to CONTIGUOUS")
            return ContiguousOracleSpec.classification_failed()

        if not result.ok:
            logger.warning("Classification failed (%s), defaulting to CONTIGUOUS", result.error)
        return result.spec

    async def classify_and_store(self, market_id: int, question: str) -> OracleSpec:
        """Classify a question and persist the spec. Never raises."""
        spec = await self.classify(question)
        logger.info("Market #%d classified as %s (%s)", market_id, spec.type, spec.category.value)
        try:
            self.specs.save(market_id, question, spec)
        except Exception:
            logger.exception("Failed to store oracle spec for market #%d", market_id)
        return spec
