"""Shared fixtures for settlement oracle tests."""

import itertools

import pytest
from settlement_oracle.providers import ReasoningResponse
from settlement_oracle.store import AuditSink, SpecStore, create_session_factory
from settlement_oracle.types import MarketInfo, MarketStatus, Outcome


class FakeReasoner:
    """Reasoning service stand-in. Replies are returned in order; exceptions are raised."""

    name = "fake"

    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls = []

    async def generate(self, instructions, prompt, search_query=None):
        self.calls.append({"instructions": instructions, "prompt": prompt, "search_query": search_query})
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        return ReasoningResponse(text=reply, trace={"reply": reply})


class FakeLedger:
    """In-memory ledger that mimics the contract's status machine and records every call."""

    def __init__(self, markets=None, next_id=0, nonce=7):
        self.markets = {m.id: m for m in (markets or [])}
        self.next_id = next_id
        self.nonce = nonce
        self.calls = []
        self._hashes = itertools.count(1)

    def _tx(self, name, *args):
        self.calls.append((name, *args))
        return f"0x{next(self._hashes):064x}"

    @property
    def transactions(self):
        return [c for c in self.calls if c[0] not in ("get_market", "next_market_id", "pending_nonce")]

    def _set(self, market_id, **changes):
        self.markets[market_id] = self.markets[market_id].model_copy(update=changes)

    async def get_market(self, market_id):
        self.calls.append(("get_market", market_id))
        return self.markets[market_id]

    async def next_market_id(self):
        self.calls.append(("next_market_id",))
        return self.next_id

    async def pending_nonce(self):
        self.calls.append(("pending_nonce",))
        return self.nonce

    async def new_market(self, question, duration, nonce):
        return self._tx("new_market", question, duration, nonce)

    async def request_settlement(self, market_id):
        self._set(market_id, status=MarketStatus.SETTLEMENT_REQUESTED)
        return self._tx("request_settlement", market_id)

    async def on_report(self, metadata, report):
        return self._tx("on_report", metadata, report)

    async def submit_report(self, market_id, outcome, confidence, response_id):
        self._set(market_id, status=MarketStatus.SETTLED, outcome=Outcome(outcome), confidence_bps=confidence)
        return self._tx("submit_report", market_id, outcome, confidence, response_id)

    async def settle_market_manually(self, market_id, outcome):
        self._set(market_id, status=MarketStatus.SETTLED, outcome=Outcome(outcome))
        return self._tx("settle_market_manually", market_id, outcome)


def make_market(market_id=1, question="Will it rain tomorrow?", status=MarketStatus.OPEN):
    return MarketInfo(id=market_id, question=question, status=status)


@pytest.fixture
def sessions():
    return create_session_factory("sqlite://")


@pytest.fixture
def spec_store(sessions):
    return SpecStore(sessions)


@pytest.fixture
def audit_sink(sessions):
    return AuditSink(sessions)
