"""Tests for settlement_oracle.orchestrator — settlement flow and market creation."""

from unittest.mock import AsyncMock, patch

import httpx
import pytest
import respx
from conftest import FakeLedger, FakeReasoner, make_market
from settlement_oracle.chain import decode_report
from settlement_oracle.classifier import TRUSTED_SOURCES, OracleClassifier
from settlement_oracle.discrete import DiscreteResolver
from settlement_oracle.errors import AlreadySettledError, NonceConflictError, SubmissionError
from settlement_oracle.judge import ConsensusEngine
from settlement_oracle.orchestrator import (
    MarketCreator,
    SettlementOrchestrator,
    request_settlement,
)
from settlement_oracle.submission import SubmissionPipeline
from settlement_oracle.types import (
    Comparison,
    DiscreteOracleSpec,
    DiscreteResolution,
    FallbackReason,
    MarketStatus,
    OracleCategory,
    ResolutionMethod,
    Verdict,
)


class StubDiscrete:
    def __init__(self, resolution):
        self.resolution = resolution
        self.calls = 0

    async def resolve(self, market_id):
        self.calls += 1
        if isinstance(self.resolution, Exception):
            raise self.resolution
        return self.resolution


def _orchestrator(ledger, discrete, reasoner=None, audit=None):
    consensus = ConsensusEngine(reasoner) if reasoner is not None else None
    return SettlementOrchestrator(ledger, discrete, consensus, SubmissionPipeline(ledger), audit)


def _submitted_report(ledger):
    name, metadata, payload = ledger.transactions[-1]
    assert name == "on_report"
    return decode_report(payload)


NOT_DISCRETE = DiscreteResolution.fail(FallbackReason.CONTIGUOUS_TYPE, "Market is not DISCRETE type")


@pytest.mark.asyncio
async def test_discrete_market_settles_without_judges(spec_store, audit_sink):
    """Live price 50000 above a $1 target resolves YES with full confidence."""
    spec_store.save(1, "Is the price above $1?", DiscreteOracleSpec(
        category=OracleCategory.CRYPTO_PRICE,
        source=TRUSTED_SOURCES[OracleCategory.CRYPTO_PRICE].model_copy(update={"params": {"ids": "bitcoin"}}),
        extraction_path="$.bitcoin.usd",
        comparison=Comparison(operator=">", target_value=1),
    ))
    ledger = FakeLedger([make_market(1, "Is the price above $1? [CONSORTIUM]")])
    reasoner = FakeReasoner('{"result": "NO", "confidence": 1}')

    with respx.mock:
        respx.get(host="api.coingecko.com", path="/api/v3/simple/price").mock(
            return_value=httpx.Response(200, json={"bitcoin": {"usd": 50000}})
        )
        async with httpx.AsyncClient() as http:
            runner = _orchestrator(ledger, DiscreteResolver(spec_store, http), reasoner, audit_sink)
            receipt = await runner.settle(1)

    assert receipt.result.method == ResolutionMethod.DISCRETE
    assert receipt.result.verdict == Verdict.YES
    assert receipt.result.is_fallback is False
    assert reasoner.calls == []
    report = _submitted_report(ledger)
    assert report.outcome_code == 2
    assert report.confidence_bps == 10000
    assert [t[0] for t in ledger.transactions] == ["request_settlement", "on_report"]
    assert audit_sink.get_by_market(1)["resolution_method"] == "DISCRETE"


@pytest.mark.asyncio
async def test_contiguous_single_judge_pass_through():
    ledger = FakeLedger([make_market(2, status=MarketStatus.SETTLEMENT_REQUESTED)])
    reasoner = FakeReasoner('{"result": "NO", "confidence": 7300}')

    receipt = await _orchestrator(ledger, StubDiscrete(NOT_DISCRETE), reasoner).settle(2)

    assert receipt.result.method == ResolutionMethod.CONTIGUOUS
    assert receipt.result.verdict == Verdict.NO
    assert receipt.result.confidence_bps == 7300
    assert receipt.result.is_fallback is True
    assert len(reasoner.calls) == 1
    assert [t[0] for t in ledger.transactions] == ["on_report"]
    report = _submitted_report(ledger)
    assert (report.market_id, report.outcome_code, report.confidence_bps) == (2, 1, 7300)


@pytest.mark.asyncio
async def test_sports_team_not_found_falls_back_to_judges(spec_store):
    spec_store.save(3, "Did the Foo Bars win their last game?", DiscreteOracleSpec(
        category=OracleCategory.SPORTS_SCORE,
        source=TRUSTED_SOURCES[OracleCategory.SPORTS_SCORE].model_copy(update={"params": {"team_search": "Foo Bars"}}),
    ))
    ledger = FakeLedger([make_market(3, "Did the Foo Bars win their last game?")])
    reasoner = FakeReasoner('{"result": "YES", "confidence": 6400}')

    with respx.mock:
        respx.get(host="www.thesportsdb.com", path="/api/v1/json/3/searchteams.php").mock(
            return_value=httpx.Response(200, json={"teams": None})
        )
        async with httpx.AsyncClient() as http:
            receipt = await _orchestrator(ledger, DiscreteResolver(spec_store, http), reasoner).settle(3)

    assert receipt.result.method == ResolutionMethod.CONTIGUOUS
    assert receipt.result.is_fallback is True
    assert receipt.result.verdict == Verdict.YES
    assert reasoner.calls[0]["search_query"] == "Did the Foo Bars win their last game?"


@pytest.mark.asyncio
async def test_consortium_market_uses_panel_and_clean_question():
    ledger = FakeLedger([make_market(4, "Will X happen? [CONSORTIUM]", MarketStatus.SETTLEMENT_REQUESTED)])
    reasoner = FakeReasoner(
        '{"result": "YES", "confidence": 8000}',
        '{"result": "YES", "confidence": 7000}',
        '{"result": "NO", "confidence": 6000}',
        '{"result": "NO", "confidence": 9000}',
        '{"result": "INCONCLUSIVE", "confidence": 1000}',
    )

    receipt = await _orchestrator(ledger, StubDiscrete(NOT_DISCRETE), reasoner).settle(4)

    assert receipt.result.method == ResolutionMethod.CONSORTIUM
    assert receipt.result.verdict == Verdict.INCONCLUSIVE
    assert receipt.result.confidence_bps == 6200
    assert receipt.result.consensus.judges == 5
    assert all(c["search_query"] == "Will X happen?" for c in reasoner.calls)
    assert _submitted_report(ledger).outcome_code == 3


@pytest.mark.asyncio
async def test_settled_market_is_rejected_without_transactions():
    ledger = FakeLedger([make_market(5, status=MarketStatus.SETTLED)])
    discrete = StubDiscrete(NOT_DISCRETE)

    with pytest.raises(AlreadySettledError, match="already settled"):
        await _orchestrator(ledger, discrete, FakeReasoner("{}")).settle(5)

    assert ledger.transactions == []
    assert discrete.calls == 0


@pytest.mark.asyncio
async def test_needs_manual_market_is_still_attempted():
    ledger = FakeLedger([make_market(6, status=MarketStatus.NEEDS_MANUAL)])
    await _orchestrator(ledger, StubDiscrete(NOT_DISCRETE), FakeReasoner('{"result": "YES", "confidence": 10}')).settle(6)
    assert [t[0] for t in ledger.transactions] == ["on_report"]


@pytest.mark.asyncio
async def test_mock_result_without_reasoning_service():
    ledger = FakeLedger([make_market(7, status=MarketStatus.SETTLEMENT_REQUESTED)])
    receipt = await _orchestrator(ledger, StubDiscrete(NOT_DISCRETE)).settle(7)

    assert receipt.result.method == ResolutionMethod.MOCK
    assert receipt.result.verdict in (Verdict.YES, Verdict.NO)
    assert receipt.result.confidence_bps == 9999


@pytest.mark.asyncio
async def test_discrete_exception_is_treated_as_fallback():
    ledger = FakeLedger([make_market(8, status=MarketStatus.SETTLEMENT_REQUESTED)])
    reasoner = FakeReasoner('{"result": "NO", "confidence": 5000}')
    receipt = await _orchestrator(ledger, StubDiscrete(RuntimeError("boom")), reasoner).settle(8)
    assert receipt.result.method == ResolutionMethod.CONTIGUOUS
    assert receipt.result.is_fallback is True


@pytest.mark.asyncio
async def test_audit_failure_does_not_fail_settlement():
    class BrokenAudit:
        def record_settlement(self, *args):
            raise RuntimeError("disk full")

    ledger = FakeLedger([make_market(9, status=MarketStatus.SETTLEMENT_REQUESTED)])
    reasoner = FakeReasoner('{"result": "YES", "confidence": 9000}')
    receipt = await _orchestrator(ledger, StubDiscrete(NOT_DISCRETE), reasoner, BrokenAudit()).settle(9)
    assert receipt.tx_hash.startswith("0x")


@pytest.mark.asyncio
async def test_submission_error_propagates():
    ledger = FakeLedger([make_market(10, status=MarketStatus.SETTLEMENT_REQUESTED)])
    ledger.on_report = AsyncMock(side_effect=SubmissionError("onReport transaction reverted"))
    reasoner = FakeReasoner('{"result": "YES", "confidence": 9000}')
    with pytest.raises(SubmissionError):
        await _orchestrator(ledger, StubDiscrete(NOT_DISCRETE), reasoner).settle(10)


@pytest.mark.asyncio
async def test_request_settlement_only_for_open_markets():
    ledger = FakeLedger([make_market(1), make_market(2, status=MarketStatus.SETTLED)])
    assert await request_settlement(ledger, 1) is not None
    assert await request_settlement(ledger, 2) is None
    assert [t[0] for t in ledger.transactions] == ["request_settlement"]


# --- Market creation ---

class ConflictingLedger(FakeLedger):
    """Rejects the first `conflicts` newMarket attempts with a nonce error."""

    def __init__(self, conflicts, **kwargs):
        super().__init__(**kwargs)
        self.conflicts = conflicts

    async def new_market(self, question, duration, nonce):
        self.calls.append(("new_market_attempt", nonce))
        if self.conflicts > 0:
            self.conflicts -= 1
            raise NonceConflictError("newMarket nonce conflict: nonce too low")
        return await super().new_market(question, duration, nonce)


@pytest.mark.asyncio
async def test_create_retries_with_next_nonce(spec_store):
    ledger = ConflictingLedger(1, next_id=11, nonce=7)
    classifier = OracleClassifier(FakeReasoner('{"type": "CONTIGUOUS", "spec": {}}'), spec_store)

    with patch("settlement_oracle.retry.asyncio.sleep", new=AsyncMock()):
        receipt = await MarketCreator(ledger, classifier).create("Will it rain tomorrow?", 60, consortium=True)

    assert [c[1] for c in ledger.calls if c[0] == "new_market_attempt"] == [7, 8]
    assert receipt.market_id == 11
    assert receipt.attempts == 2
    assert receipt.nonce == 8
    assert receipt.oracle_type == "CONTIGUOUS"
    assert ledger.transactions[-1] == ("new_market", "Will it rain tomorrow? [CONSORTIUM]", 60, 8)
    assert spec_store.load(11).type == "CONTIGUOUS"


@pytest.mark.asyncio
async def test_create_gives_up_after_three_attempts():
    ledger = ConflictingLedger(5)
    with patch("settlement_oracle.retry.asyncio.sleep", new=AsyncMock()):
        with pytest.raises(NonceConflictError):
            await MarketCreator(ledger).create("Q?")
    assert len([c for c in ledger.calls if c[0] == "new_market_attempt"]) == 3


@pytest.mark.asyncio
async def test_create_enforces_minimum_duration_and_rejects_empty_question():
    ledger = FakeLedger()
    receipt = await MarketCreator(ledger).create("  Q?  ", duration=3)
    assert ledger.transactions == [("new_market", "Q?", 10, 7)]
    assert receipt.oracle_type == "UNKNOWN"

    with pytest.raises(ValueError):
        await MarketCreator(ledger).create("   ")


@pytest.mark.asyncio
async def test_create_survives_malformed_classification(spec_store):
    ledger = FakeLedger(next_id=4)
    reply = '{"type": "CONTIGUOUS", "spec": {"natural_language_summary": 123}}'
    classifier = OracleClassifier(FakeReasoner(reply), spec_store)

    receipt = await MarketCreator(ledger, classifier).create("Will it rain tomorrow?", 60)

    assert receipt.market_id == 4
    assert receipt.oracle_type == "CONTIGUOUS"
    assert [t[0] for t in ledger.transactions] == ["new_market"]
    stored = spec_store.load(4)
    assert stored.natural_language_summary == "Resolved via AI reasoning (classification failed)."
