"""Discrete resolution: answer a market from a whitelisted data source.

Fetches data from the source recorded in the market's oracle spec, extracts a
value and applies the stored comparison. Every failure is returned as a
fallback with a reason code so the orchestrator can hand over to AI reasoning.
"""

import logging
import operator
from typing import Any
from urllib.parse import quote, urlparse

import httpx

from .store import SpecStore
from .types import (
    MAX_CONFIDENCE_BPS,
    DiscreteOracleSpec,
    DiscreteResolution,
    FallbackReason,
    OracleCategory,
    Verdict,
)
from .utils import extract_value

logger = logging.getLogger(__name__)

WTTR_URL = "https://wttr.in/{city}?format=j1"
SPORTS_SEARCH_URL = "https://www.thesportsdb.com/api/v1/json/3/searchteams.php"
SPORTS_LAST_EVENTS_URL = "https://www.thesportsdb.com/api/v1/json/3/eventslast.php"
FETCH_TIMEOUT = 15.0

COMPARATORS = {
    ">": operator.gt,
    "<": operator.lt,
    ">=": operator.ge,
    "<=": operator.le,
    "==": operator.eq,
    "!=": operator.ne,
}


class DiscreteFallback(Exception):
    """Internal signal carrying a fallback reason out of a resolution step."""

    def __init__(self, reason: FallbackReason, message: str):
        super().__init__(message)
        self.reason = reason


def _coerce(value: Any) -> Any:
    """Turn numeric strings into floats so API strings compare like numbers."""
    if isinstance(value, bool) or not isinstance(value, str):
        return value
    try:
        return float(value.strip())
    except ValueError:
        return value


def compare(value: Any, op: str, target: Any) -> bool:
    """Apply a stored comparator. Raises TypeError on incomparable operands."""
    fn = COMPARATORS.get(op)
    if fn is None:
        raise TypeError(f"Unknown comparison operator: {op!r}")
    return bool(fn(_coerce(value), _coerce(target)))


def _score(raw: Any) -> int:
    try:
        return int(raw)
    except (TypeError, ValueError):
        return 0


def sports_result(event: dict[str, Any], team_name: str) -> dict[str, Any]:
    """Work out whether `team_name` won `event`; names are matched by substring."""
    home_team = event.get("strHomeTeam") or ""
    away_team = event.get("strAwayTeam") or ""
    home_score = _score(event.get("intHomeScore"))
    away_score = _score(event.get("intAwayScore"))

    ours = team_name.lower()
    home = home_team.lower()
    is_home = bool(home) and (home in ours or ours in home)
    team_score, opponent_score = (home_score, away_score) if is_home else (away_score, home_score)

    if team_score > opponent_score:
        result = "WIN"
    elif team_score == opponent_score:
        result = "DRAW"
    else:
        result = "LOSS"

    return {
        "event": event.get("strEvent"),
        "date": event.get("dateEvent"),
        "home_team": home_team,
        "away_team": away_team,
        "home_score": home_score,
        "away_score": away_score,
        "our_team": team_name,
        "is_home_team": is_home,
        "team_score": team_score,
        "opponent_score": opponent_score,
        "result": result,
        "won": result == "WIN",
    }


class DiscreteResolver:
    """Resolve discrete markets against their whitelisted source."""

    def __init__(self, specs: SpecStore, http: httpx.AsyncClient):
        self.specs = specs
        self.http = http

    async def _get_json(self, url: str, params: dict[str, str] | None = None,
                        headers: dict[str, str] | None = None,
                        reason: FallbackReason = FallbackReason.API_ERROR) -> tuple[Any, str]:
        try:
            resp = await self.http.get(url, params=params or None, headers=headers or None, timeout=FETCH_TIMEOUT)
            resp.raise_for_status()
            return resp.json(), str(resp.url)
        except (httpx.HTTPError, ValueError) as e:
            raise DiscreteFallback(reason, f"API call failed: {e}") from e

    async def _resolve_sports(self, spec: DiscreteOracleSpec) -> tuple[Any, str, dict[str, Any]]:
        params = spec.source.params
        team_query = params.get("team_search") or params.get("t")
        if not team_query:
            raise DiscreteFallback(FallbackReason.SPORTS_TEAM_NOT_FOUND, "No team name in oracle spec")

        logger.info("[Discrete] SPORTS: Searching for team %r", team_query)
        search, _ = await self._get_json(
            SPORTS_SEARCH_URL,
            params={"t": team_query},
            reason=FallbackReason.SPORTS_TEAM_SEARCH_FAILED,
        )
        teams = (search or {}).get("teams") or []
        if not teams:
            raise DiscreteFallback(FallbackReason.SPORTS_TEAM_NOT_FOUND, f"Team not found: {team_query}")

        team_id = teams[0].get("idTeam")
        team_name = teams[0].get("strTeam") or team_query
        logger.info("[Discrete] SPORTS: Found team %s (ID: %s)", team_name, team_id)

        data, url = await self._get_json(SPORTS_LAST_EVENTS_URL, params={"id": str(team_id)})
        results = (data or {}).get("results") or []
        if not results:
            raise DiscreteFallback(FallbackReason.NO_RECENT_GAMES, "No recent games found")

        context = sports_result(results[0], team_name)
        context["team_id"] = team_id
        context["search_query"] = team_query
        logger.info(
            "[Discrete] SPORTS: %s %s (%d-%d) in %s",
            team_name, context["result"], context["team_score"], context["opponent_score"], context["event"],
        )
        return data, url, context

    async def _fetch(self, spec: DiscreteOracleSpec) -> tuple[Any, str]:
        if spec.category == OracleCategory.WEATHER:
            city = spec.source.params.get("city") or urlparse(spec.source.endpoint).path.strip("/")
            if not city:
                raise DiscreteFallback(FallbackReason.API_ERROR, "No city in oracle spec")
            return await self._get_json(WTTR_URL.format(city=quote(city)), headers=spec.source.headers)
        return await self._get_json(spec.source.endpoint, params=spec.source.params, headers=spec.source.headers)

    async def _resolve(self, market_id: int) -> DiscreteResolution:
        spec = self.specs.load(market_id)
        if spec is None:
            raise DiscreteFallback(FallbackReason.SPEC_NOT_FOUND, "No oracle spec found for this market")
        if not isinstance(spec, DiscreteOracleSpec):
            raise DiscreteFallback(FallbackReason.CONTIGUOUS_TYPE, "Market is not DISCRETE type")

        logger.info("[Discrete] Resolving market #%d via %s (%s)", market_id, spec.source.name, spec.category.value)

        sports_context = None
        if spec.category == OracleCategory.SPORTS_SCORE:
            data, url, sports_context = await self._resolve_sports(spec)
            value = sports_context["won"]
        else:
            data, url = await self._fetch(spec)
            try:
                value = extract_value(data, spec.extraction_path)
            except ValueError as e:
                raise DiscreteFallback(FallbackReason.EXTRACTION_ERROR, str(e)) from e

        if value is None:
            raise DiscreteFallback(FallbackReason.NO_VALUE, f"No value at extraction path {spec.extraction_path}")

        op = spec.comparison.operator
        target = spec.comparison.target_value
        if sports_context is not None:
            outcome = bool(value)
        else:
            try:
                outcome = compare(value, op, target)
            except TypeError as e:
                raise DiscreteFallback(FallbackReason.EXTRACTION_ERROR, f"Cannot compare {value!r} {op} {target!r}") from e

        verdict = Verdict.YES if outcome else Verdict.NO
        logger.info("[Discrete] Comparison: %r %s %r = %s => %s", value, op, target, outcome, verdict.value)

        return DiscreteResolution(
            success=True,
            fallback=False,
            verdict=verdict,
            confidence_bps=MAX_CONFIDENCE_BPS,
            extracted_value=value,
            target_value=target,
            operator=op,
            source=spec.source.name,
            api_url=url,
            api_response=data,
            sports_context=sports_context,
        )

    async def resolve(self, market_id: int) -> DiscreteResolution:
        """Resolve a market from its stored spec. Never raises."""
        try:
            return await self._resolve(market_id)
        except DiscreteFallback as e:
            logger.warning("[Discrete] Market #%d fallback %s: %s", market_id, e.reason.value, e)
            return DiscreteResolution.fail(e.reason, str(e))
        except Exception as e:
            logger.exception("[Discrete] Resolution failed for market #%d", market_id)
            return DiscreteResolution.fail(FallbackReason.UNKNOWN_ERROR, str(e))
