"""Submission of settlement reports to the ledger."""

import logging
import uuid

from .chain import LedgerClient, encode_report
from .types import MAX_CONFIDENCE_BPS, ResolutionMethod, ResolutionResult, SettlementReport, Verdict

logger = logging.getLogger(__name__)

# Reserved for multi-party report signatures; the contract ignores it today.
EMPTY_METADATA = b""

OUTCOME_CODES = {
    Verdict.NO: 1,
    Verdict.YES: 2,
    Verdict.INCONCLUSIVE: 3,
}


def clamp_confidence(confidence_bps: int) -> int:
    return min(max(int(confidence_bps or 0), 0), MAX_CONFIDENCE_BPS)


def new_response_id(method: ResolutionMethod) -> str:
    """Opaque, collision-resistant id used to cross-reference audit records."""
    return f"{method.value.lower()}-{uuid.uuid4().hex}"


def build_report(market_id: int, result: ResolutionResult, response_id: str) -> SettlementReport:
    return SettlementReport(
        market_id=market_id,
        outcome_code=OUTCOME_CODES[result.verdict],
        confidence_bps=clamp_confidence(result.confidence_bps),
        response_id=response_id,
    )


class SubmissionPipeline:
    """Encode a resolution and send it through the contract's onReport entry point.

    One transaction per call and no retry: a failure raises SubmissionError
    and the caller may start again from the status check.
    """

    def __init__(self, ledger: LedgerClient):
        self.ledger = ledger

    async def submit(self, market_id: int, result: ResolutionResult) -> tuple[SettlementReport, str]:
        report = build_report(market_id, result, new_response_id(result.method))
        logger.info(
            "Submitting report: market=%d outcome=%s(%d) confidence=%d method=%s%s",
            market_id,
            result.verdict.value,
            report.outcome_code,
            report.confidence_bps,
            result.method.value,
            " (FALLBACK)" if result.is_fallback else "",
        )
        tx_hash = await self.ledger.on_report(EMPTY_METADATA, encode_report(report))
        return report, tx_hash
