"""Shared types and data models for the settlement oracle."""

from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field

MAX_CONFIDENCE_BPS = 10_000
CONSORTIUM_TAG = " [CONSORTIUM]"


class MarketStatus(IntEnum):
    """Market status matching the on-chain Status enum."""
    OPEN = 0
    SETTLEMENT_REQUESTED = 1
    SETTLED = 2
    NEEDS_MANUAL = 3


class Outcome(IntEnum):
    """Market outcome matching the on-chain Outcome enum (0 = unset)."""
    NONE = 0
    NO = 1
    YES = 2
    INCONCLUSIVE = 3


class Verdict(str, Enum):
    """Answer produced by a resolver or judge."""
    YES = "YES"
    NO = "NO"
    INCONCLUSIVE = "INCONCLUSIVE"

    def to_chain_value(self) -> int:
        """Convert to the on-chain outcome code."""
        return {"NO": Outcome.NO, "YES": Outcome.YES, "INCONCLUSIVE": Outcome.INCONCLUSIVE}[self.value]


class ResolutionMethod(str, Enum):
    DISCRETE = "DISCRETE"
    CONSORTIUM = "CONSORTIUM"
    CONTIGUOUS = "CONTIGUOUS"
    MOCK = "MOCK"
    ADMIN = "ADMIN"


class OracleCategory(str, Enum):
    CRYPTO_PRICE = "CRYPTO_PRICE"
    FOREX_RATE = "FOREX_RATE"
    WEATHER = "WEATHER"
    SPORTS_SCORE = "SPORTS_SCORE"
    DATE_EVENT = "DATE_EVENT"
    GENERAL_AI = "GENERAL_AI"


class FallbackReason(str, Enum):
    """Why the discrete engine handed a market over to AI reasoning."""
    SPEC_NOT_FOUND = "SPEC_NOT_FOUND"
    CONTIGUOUS_TYPE = "CONTIGUOUS_TYPE"
    SPORTS_TEAM_SEARCH_FAILED = "SPORTS_TEAM_SEARCH_FAILED"
    SPORTS_TEAM_NOT_FOUND = "SPORTS_TEAM_NOT_FOUND"
    NO_RECENT_GAMES = "NO_RECENT_GAMES"
    API_ERROR = "API_ERROR"
    EXTRACTION_ERROR = "EXTRACTION_ERROR"
    NO_VALUE = "NO_VALUE"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


Operator = Literal[">", "<", ">=", "<=", "==", "!="]


class MarketInfo(BaseModel):
    """On-chain market data."""
    id: int
    question: str
    market_open: int = 0
    market_close: int = 0
    status: MarketStatus
    outcome: Outcome = Outcome.NONE
    settled_at: int = 0
    evidence_uri: str = ""
    confidence_bps: int = Field(default=0, ge=0, le=MAX_CONFIDENCE_BPS)

    @property
    def is_consortium(self) -> bool:
        return CONSORTIUM_TAG.strip() in self.question

    @property
    def clean_question(self) -> str:
        return self.question.replace(CONSORTIUM_TAG, "").strip()


# --- Oracle specs ---

class OracleSource(BaseModel):
    """A whitelisted data source descriptor."""
    name: str
    endpoint: str
    params: dict[str, str] = {}
    headers: dict[str, str] = {}


class Comparison(BaseModel):
    operator: Operator = "=="
    target_value: float | int | str | bool = True


class DiscreteOracleSpec(BaseModel):
    type: Literal["DISCRETE"] = "DISCRETE"
    category: OracleCategory
    natural_language_summary: str = "Oracle resolution logic."
    source: OracleSource
    extraction_path: str = "$"
    comparison: Comparison = Comparison()
    resolution_timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )


class ContiguousOracleSpec(BaseModel):
    type: Literal["CONTIGUOUS"] = "CONTIGUOUS"
    category: OracleCategory = OracleCategory.GENERAL_AI
    natural_language_summary: str = "Resolved via AI reasoning and web search."

    @classmethod
    def classification_failed(cls) -> "ContiguousOracleSpec":
        return cls(natural_language_summary="Resolved via AI reasoning (classification failed).")


OracleSpec = Annotated[Union[DiscreteOracleSpec, ContiguousOracleSpec], Field(discriminator="type")]


class StoredSpec(BaseModel):
    """Wrapper used to (de)serialize the discriminated spec union."""
    spec: OracleSpec


# --- Resolution ---

class DiscreteResolution(BaseModel):
    """Result of a discrete (API-driven) resolution attempt."""
    success: bool = False
    fallback: bool = True
    fallback_reason: FallbackReason | None = None
    error: str | None = None
    verdict: Verdict | None = None
    confidence_bps: int = Field(default=0, ge=0, le=MAX_CONFIDENCE_BPS)
    extracted_value: Any = None
    target_value: Any = None
    operator: str | None = None
    source: str | None = None
    api_url: str | None = None
    api_response: Any = None
    sports_context: dict[str, Any] | None = None

    @classmethod
    def fail(cls, reason: FallbackReason, error: str) -> "DiscreteResolution":
        return cls(fallback_reason=reason, error=error)


class ConsensusVote(BaseModel):
    """A single judge's answer."""
    judge_index: int
    verdict: Verdict
    confidence_bps: int
    raw_trace: dict[str, Any] = {}


class ConsensusResult(BaseModel):
    """Aggregated answer from a judge panel."""
    verdict: Verdict
    confidence_bps: int = Field(ge=0, le=MAX_CONFIDENCE_BPS)
    judges: int
    tally: dict[str, int]
    votes: list[ConsensusVote]
    trace: dict[str, Any] = {}
    summary: str = ""


class ResolutionResult(BaseModel):
    """Outcome of one settlement attempt, before submission."""
    verdict: Verdict
    confidence_bps: int = Field(ge=0, le=MAX_CONFIDENCE_BPS)
    method: ResolutionMethod
    is_fallback: bool = False
    evidence: dict[str, Any] = {}
    consensus: ConsensusResult | None = None


class SettlementReport(BaseModel):
    """Canonical payload passed to the ledger's onReport call."""
    market_id: int = Field(ge=0)
    outcome_code: int = Field(ge=1, le=3)
    confidence_bps: int = Field(ge=0, le=MAX_CONFIDENCE_BPS)
    response_id: str

    model_config = {"frozen": True}


class SettlementReceipt(BaseModel):
    """Full report of a market settlement."""
    market_id: int
    question: str
    result: ResolutionResult
    report: SettlementReport
    tx_hash: str


class CreationReceipt(BaseModel):
    market_id: int
    tx_hash: str
    nonce: int
    attempts: int
    oracle_type: str = "UNKNOWN"


class AdminReceipt(BaseModel):
    market_id: int
    verdict: Verdict
    response_id: str
    tx_hash: str
