"""Manual settlement by an administrator."""

import logging
import uuid

from .chain import LedgerClient
from .errors import AlreadySettledError
from .store import AuditSink
from .types import MAX_CONFIDENCE_BPS, AdminReceipt, MarketStatus, Verdict

logger = logging.getLogger(__name__)


class AdminOverride:
    """Settle a market by hand, choosing the ledger call from its current status.

    - NeedsManual: settleMarketManually
    - Open: requestSettlement, then submitReport
    - SettlementRequested: submitReport
    - Settled: rejected
    """

    def __init__(self, ledger: LedgerClient, audit: AuditSink | None = None):
        self.ledger = ledger
        self.audit = audit

    async def settle(self, market_id: int, verdict: Verdict, source: str, comments: str = "") -> AdminReceipt:
        if verdict not in (Verdict.YES, Verdict.NO):
            raise ValueError("Outcome must be YES or NO")
        if not source or not source.strip():
            raise ValueError("An evidence source is required for manual settlement")

        market = await self.ledger.get_market(market_id)
        logger.info("[Admin] Market #%d status: %s", market_id, market.status.name)

        if market.status == MarketStatus.SETTLED:
            raise AlreadySettledError(market_id)

        response_id = f"admin-{uuid.uuid4().hex}"
        outcome = verdict.to_chain_value()
        confidence = MAX_CONFIDENCE_BPS

        if market.status == MarketStatus.NEEDS_MANUAL:
            logger.info("[Admin] Using settleMarketManually for NeedsManual market")
            tx_hash = await self.ledger.settle_market_manually(market_id, outcome)
        else:
            if market.status == MarketStatus.OPEN:
                logger.info("[Admin] Market is Open, requesting settlement first...")
                await self.ledger.request_settlement(market_id)
            logger.info("[Admin] Submitting report...")
            tx_hash = await self.ledger.submit_report(market_id, outcome, confidence, response_id)

        logger.info("[Admin] Market #%d manually settled as %s: %s", market_id, verdict.value, tx_hash)

        if self.audit is not None:
            try:
                self.audit.apply_admin_override(
                    market_id,
                    market.clean_question,
                    verdict,
                    confidence,
                    response_id,
                    tx_hash,
                    source=source.strip(),
                    comments=comments,
                )
            except Exception:
                logger.exception("[Admin] Audit write failed for market #%d", market_id)

        return AdminReceipt(market_id=market_id, verdict=verdict, response_id=response_id, tx_hash=tx_hash)
