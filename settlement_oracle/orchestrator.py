"""Per-market settlement flow and market creation.

Settlement runs as a small state machine:

    CHECK_STATUS -> [Open] REQUEST_SETTLEMENT -> TRY_DISCRETE
                 -> SUBMIT                      (discrete succeeded)
                 -> TRY_CONTIGUOUS -> SUBMIT    (discrete fell back)

There is no local lock per market: the ledger's status field is the only
guard against settling twice.
"""

import logging
import random
from enum import Enum

from .chain import LedgerClient
from .classifier import OracleClassifier
from .discrete import DiscreteResolver
from .errors import AlreadySettledError
from .judge import ConsensusEngine
from .retry import NONCE_RETRY, RetryPolicy
from .store import AuditSink
from .submission import SubmissionPipeline
from .types import (
    CONSORTIUM_TAG,
    CreationReceipt,
    DiscreteResolution,
    FallbackReason,
    MarketInfo,
    MarketStatus,
    ResolutionMethod,
    ResolutionResult,
    SettlementReceipt,
    Verdict,
)

logger = logging.getLogger(__name__)

MIN_DURATION_SECONDS = 10
MOCK_CONFIDENCE_BPS = 9999


class Step(str, Enum):
    CHECK_STATUS = "CHECK_STATUS"
    REQUEST_SETTLEMENT = "REQUEST_SETTLEMENT"
    TRY_DISCRETE = "TRY_DISCRETE"
    TRY_CONTIGUOUS = "TRY_CONTIGUOUS"
    SUBMIT = "SUBMIT"


def discrete_evidence(resolution: DiscreteResolution) -> dict:
    return {
        "extracted_value": resolution.extracted_value,
        "target_value": resolution.target_value,
        "operator": resolution.operator,
        "source": resolution.source,
        "api_url": resolution.api_url,
        "api_response": resolution.api_response,
        "sports_context": resolution.sports_context,
    }


def mock_resolution(is_fallback: bool) -> ResolutionResult:
    """Stand-in answer used when no reasoning service is configured."""
    verdict = random.choice([Verdict.YES, Verdict.NO])
    logger.warning("Reasoning service not configured. Using mock result: %s", verdict.value)
    return ResolutionResult(
        verdict=verdict,
        confidence_bps=MOCK_CONFIDENCE_BPS,
        method=ResolutionMethod.MOCK,
        is_fallback=is_fallback,
    )


async def request_settlement(ledger: LedgerClient, market_id: int) -> str | None:
    """Move an Open market to SettlementRequested. Returns the tx hash, or None if not Open."""
    market = await ledger.get_market(market_id)
    if market.status != MarketStatus.OPEN:
        logger.info("Market %d status is %s, skipping requestSettlement", market_id, market.status.name)
        return None
    return await ledger.request_settlement(market_id)


class SettlementOrchestrator:
    def __init__(
        self,
        ledger: LedgerClient,
        discrete: DiscreteResolver,
        consensus: ConsensusEngine | None,
        submitter: SubmissionPipeline,
        audit: AuditSink | None = None,
    ):
        self.ledger = ledger
        self.discrete = discrete
        self.consensus = consensus
        self.submitter = submitter
        self.audit = audit

    async def _check_status(self, market_id: int) -> MarketInfo:
        logger.info("[%s] market %d", Step.CHECK_STATUS.value, market_id)
        market = await self.ledger.get_market(market_id)
        if market.status == MarketStatus.SETTLED:
            raise AlreadySettledError(market_id)

        if market.status == MarketStatus.OPEN:
            logger.info("[%s] market %d is Open", Step.REQUEST_SETTLEMENT.value, market_id)
            await self.ledger.request_settlement(market_id)
            market = await self.ledger.get_market(market_id)
        return market

    async def _try_discrete(self, market_id: int) -> DiscreteResolution:
        logger.info("[%s] market %d", Step.TRY_DISCRETE.value, market_id)
        try:
            return await self.discrete.resolve(market_id)
        except Exception as e:
            logger.exception("Discrete resolution call failed, falling back to CONTIGUOUS")
            return DiscreteResolution.fail(FallbackReason.UNKNOWN_ERROR, str(e))

    async def _try_contiguous(self, market: MarketInfo, is_fallback: bool) -> ResolutionResult:
        logger.info("[%s] market %d", Step.TRY_CONTIGUOUS.value, market.id)
        if self.consensus is None:
            return mock_resolution(is_fallback)

        consensus = await self.consensus.run(market.clean_question, consortium=market.is_consortium)
        return ResolutionResult(
            verdict=consensus.verdict,
            confidence_bps=consensus.confidence_bps,
            method=ResolutionMethod.CONSORTIUM if market.is_consortium else ResolutionMethod.CONTIGUOUS,
            is_fallback=is_fallback,
            evidence={"trace": consensus.trace, "summary": consensus.summary},
            consensus=consensus,
        )

    async def resolve(self, market: MarketInfo) -> ResolutionResult:
        """Pick the answer for a market: discrete when possible, AI reasoning otherwise."""
        discrete = await self._try_discrete(market.id)
        if discrete.success and not discrete.fallback:
            logger.info("DISCRETE resolution succeeded: %s", discrete.verdict.value)
            if market.is_consortium:
                logger.info("Consortium mode requested but skipped for deterministic DISCRETE result")
            return ResolutionResult(
                verdict=discrete.verdict,
                confidence_bps=discrete.confidence_bps,
                method=ResolutionMethod.DISCRETE,
                is_fallback=False,
                evidence=discrete_evidence(discrete),
            )

        reason = discrete.fallback_reason.value if discrete.fallback_reason else "N/A"
        logger.info("DISCRETE not applicable or failed: %s. Falling back to CONTIGUOUS.", reason)
        return await self._try_contiguous(market, is_fallback=discrete.fallback)

    async def settle(self, market_id: int) -> SettlementReceipt:
        """Run one settlement attempt. Raises AlreadySettledError or SubmissionError."""
        logger.info("Starting settlement for market %d", market_id)
        market = await self._check_status(market_id)
        logger.info("Settling question: %r", market.question)

        result = await self.resolve(market)

        logger.info("[%s] market %d", Step.SUBMIT.value, market_id)
        report, tx_hash = await self.submitter.submit(market_id, result)
        logger.info("Settlement tx submitted: %s", tx_hash)

        if self.audit is not None:
            try:
                self.audit.record_settlement(market_id, market.clean_question, result, report.response_id, tx_hash)
            except Exception:
                logger.exception("Audit write failed for %s; ledger settlement stands", report.response_id)

        return SettlementReceipt(
            market_id=market_id,
            question=market.question,
            result=result,
            report=report,
            tx_hash=tx_hash,
        )


class MarketCreator:
    """Create markets on the ledger and classify their questions."""

    def __init__(
        self,
        ledger: LedgerClient,
        classifier: OracleClassifier | None = None,
        retry: RetryPolicy = NONCE_RETRY,
    ):
        self.ledger = ledger
        self.classifier = classifier
        self.retry = retry

    async def create(self, question: str, duration: int | None = None, consortium: bool = False) -> CreationReceipt:
        question = question.strip()
        if not question:
            raise ValueError("No question provided")

        final_question = f"{question}{CONSORTIUM_TAG}" if consortium else question
        market_duration = max(int(duration or MIN_DURATION_SECONDS), MIN_DURATION_SECONDS)

        market_id = await self.ledger.next_market_id()
        base_nonce = await self.ledger.pending_nonce()
        logger.info("[Create] Using nonce %d for market #%d", base_nonce, market_id)

        attempts = 0

        async def attempt(index: int) -> str:
            nonlocal attempts
            attempts = index + 1
            return await self.ledger.new_market(final_question, market_duration, nonce=base_nonce + index)

        tx_hash = await self.retry.run(attempt)
        logger.info("[Create] Market #%d created, tx: %s", market_id, tx_hash)

        oracle_type = "UNKNOWN"
        if self.classifier is not None:
            spec = await self.classifier.classify_and_store(market_id, question)
            oracle_type = spec.type

        return CreationReceipt(
            market_id=market_id,
            tx_hash=tx_hash,
            nonce=base_nonce + attempts - 1,
            attempts=attempts,
            oracle_type=oracle_type,
        )
