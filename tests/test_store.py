"""Tests for settlement_oracle.store — spec persistence and settlement audit records."""

from settlement_oracle.store import create_session_factory, SpecStore
from settlement_oracle.types import (
    ConsensusResult,
    ConsensusVote,
    ContiguousOracleSpec,
    ResolutionMethod,
    ResolutionResult,
    Verdict,
)


def _consortium_result():
    votes = [
        ConsensusVote(judge_index=1, verdict=Verdict.YES, confidence_bps=9000),
        ConsensusVote(judge_index=2, verdict=Verdict.NO, confidence_bps=6000),
    ]
    consensus = ConsensusResult(
        verdict=Verdict.YES, confidence_bps=7500, judges=2,
        tally={"YES": 1, "NO": 1, "INCONCLUSIVE": 0}, votes=votes,
    )
    return ResolutionResult(
        verdict=Verdict.INCONCLUSIVE,
        confidence_bps=7500,
        method=ResolutionMethod.CONSORTIUM,
        is_fallback=True,
        evidence={"summary": "split panel"},
        consensus=consensus,
    )


class TestSpecStore:
    def test_round_trip(self, spec_store):
        spec = ContiguousOracleSpec(natural_language_summary="YES if it rains")
        assert spec_store.save(1, "Will it rain?", spec) is True
        assert spec_store.load(1) == spec

    def test_missing(self, spec_store):
        assert spec_store.load(99) is None

    def test_write_once(self, spec_store):
        spec_store.save(1, "Will it rain?", ContiguousOracleSpec(natural_language_summary="first"))
        assert spec_store.save(1, "Will it rain?", ContiguousOracleSpec(natural_language_summary="second")) is False
        assert spec_store.load(1).natural_language_summary == "first"

    def test_file_database_persists(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'nested' / 'oracle.db'}"
        SpecStore(create_session_factory(url)).save(3, "Q?", ContiguousOracleSpec())
        assert SpecStore(create_session_factory(url)).load(3) == ContiguousOracleSpec()


class TestAuditSink:
    def test_record_settlement(self, audit_sink):
        audit_sink.record_settlement(4, "Q?", _consortium_result(), "consortium-1", "0xabc")
        record = audit_sink.get_by_market(4)

        assert record["response_id"] == "consortium-1"
        assert record["result"] == "INCONCLUSIVE"
        assert record["confidence"] == 7500
        assert record["resolution_method"] == "CONSORTIUM"
        assert record["is_fallback"] is True
        assert record["is_manual_settlement"] is False
        assert record["consensus"]["judges"] == 2
        assert record["consensus"]["details"][1] == {"result": "NO", "confidence": 6000}

    def test_missing_market(self, audit_sink):
        assert audit_sink.get_by_market(4) is None

    def test_admin_override_updates_existing_record(self, audit_sink):
        audit_sink.record_settlement(4, "Q?", _consortium_result(), "consortium-1", "0xabc")
        record_id = audit_sink.apply_admin_override(
            4, "Q?", Verdict.NO, 10000, "admin-1", "0xdef", source="https://example.com/result", comments="checked",
        )

        assert record_id == "consortium-1"
        record = audit_sink.get_by_market(4)
        assert record["result"] == "NO"
        assert record["confidence"] == 10000
        assert record["resolution_method"] == "ADMIN"
        assert record["is_manual_settlement"] is True
        assert record["admin_override"]["admin_source"] == "https://example.com/result"
        assert record["admin_override"]["admin_tx_hash"] == "0xdef"
        assert record["tx_hash"] == "0xabc"

    def test_admin_override_inserts_when_missing(self, audit_sink):
        record_id = audit_sink.apply_admin_override(5, "Q?", Verdict.YES, 10000, "admin-2", "0x1", source="manual")
        assert record_id == "admin-2"
        record = audit_sink.get_by_market(5)
        assert record["result"] == "YES"
        assert record["is_fallback"] is False
        assert record["admin_override"]["admin_comments"] == ""
