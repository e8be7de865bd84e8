"""Persistence for oracle specs and the settlement audit trail.

Both tables live in one SQLAlchemy database (SQLite by default). The ledger
is authoritative for outcomes; these records exist for audit and for the
discrete engine to find the recipe chosen at market creation.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Integer, String, Text, create_engine, select
from sqlalchemy.engine import make_url
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from .types import OracleSpec, ResolutionResult, StoredSpec, Verdict

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class OracleSpecRecord(Base):
    __tablename__ = "oracle_specs"

    market_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    question: Mapped[str] = mapped_column(Text, nullable=False)
    spec_type: Mapped[str] = mapped_column(String, nullable=False)
    spec: Mapped[dict] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class SettlementRecord(Base):
    __tablename__ = "settlements"

    response_id: Mapped[str] = mapped_column(String, primary_key=True)
    market_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    question: Mapped[str] = mapped_column(Text, nullable=False)
    verdict: Mapped[str] = mapped_column(String, nullable=False)
    confidence_bps: Mapped[int] = mapped_column(Integer, nullable=False)
    tx_hash: Mapped[str | None] = mapped_column(String, nullable=True)
    resolution_method: Mapped[str] = mapped_column(String, nullable=False)
    is_fallback: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    consensus: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    evidence: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    admin_override: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


def _ensure_sqlite_path(url: str) -> None:
    parsed = make_url(url)
    if parsed.get_backend_name() != "sqlite":
        return
    database = parsed.database
    if database and database != ":memory:":
        Path(database).parent.mkdir(parents=True, exist_ok=True)


def create_session_factory(url: str) -> sessionmaker[Session]:
    """Create the engine, ensure tables exist and return a session factory."""
    _ensure_sqlite_path(url)
    engine_kwargs: dict[str, Any] = {"future": True}
    parsed = make_url(url)
    if parsed.get_backend_name() == "sqlite":
        engine_kwargs["connect_args"] = {"check_same_thread": False}
        if parsed.database in (None, "", ":memory:"):
            engine_kwargs["poolclass"] = StaticPool
    engine = create_engine(url, **engine_kwargs)
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=True, expire_on_commit=False, future=True)


class SpecStore:
    """Write-once store of oracle specs keyed by market id."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self._sessions = session_factory

    def save(self, market_id: int, question: str, spec: OracleSpec) -> bool:
        """Persist a spec. Returns False (and keeps the old one) if the market already has one."""
        with self._sessions() as session:
            if session.get(OracleSpecRecord, market_id) is not None:
                logger.warning("Oracle spec for market %d already stored; leaving it unchanged", market_id)
                return False
            session.add(OracleSpecRecord(
                market_id=market_id,
                question=question,
                spec_type=spec.type,
                spec=spec.model_dump(mode="json"),
            ))
            session.commit()
        return True

    def load(self, market_id: int) -> OracleSpec | None:
        with self._sessions() as session:
            record = session.get(OracleSpecRecord, market_id)
            if record is None:
                return None
            return StoredSpec.model_validate({"spec": record.spec}).spec


class AuditSink:
    """Settlement audit records. One logical record per market."""

    def __init__(self, session_factory: sessionmaker[Session]):
        self._sessions = session_factory

    def record_settlement(
        self,
        market_id: int,
        question: str,
        result: ResolutionResult,
        response_id: str,
        tx_hash: str,
    ) -> None:
        consensus = None
        if result.consensus is not None:
            consensus = {
                "judges": result.consensus.judges,
                "tally": result.consensus.tally,
                "details": [
                    {"result": v.verdict.value, "confidence": v.confidence_bps}
                    for v in result.consensus.votes
                ],
            }
        with self._sessions() as session:
            session.add(SettlementRecord(
                response_id=response_id,
                market_id=market_id,
                question=question,
                verdict=result.verdict.value,
                confidence_bps=result.confidence_bps,
                tx_hash=tx_hash,
                resolution_method=result.method.value,
                is_fallback=result.is_fallback,
                consensus=consensus,
                evidence=result.evidence or None,
            ))
            session.commit()

    def apply_admin_override(
        self,
        market_id: int,
        question: str,
        verdict: Verdict,
        confidence_bps: int,
        response_id: str,
        tx_hash: str,
        source: str,
        comments: str = "",
    ) -> str:
        """Update the market's existing record, or insert one. Returns the record id."""
        override = {
            "final_result": verdict.value,
            "final_confidence": confidence_bps,
            "admin_source": source,
            "admin_comments": comments,
            "admin_tx_hash": tx_hash,
            "override_timestamp": utcnow().isoformat(),
        }
        with self._sessions() as session:
            record = session.scalars(
                select(SettlementRecord)
                .where(SettlementRecord.market_id == market_id)
                .order_by(SettlementRecord.created_at)
            ).first()
            if record is not None:
                record.admin_override = override
                record.verdict = verdict.value
                record.confidence_bps = confidence_bps
                record.resolution_method = "ADMIN"
                logger.info("Updated existing settlement record %s", record.response_id)
            else:
                record = SettlementRecord(
                    response_id=response_id,
                    market_id=market_id,
                    question=question,
                    verdict=verdict.value,
                    confidence_bps=confidence_bps,
                    tx_hash=tx_hash,
                    resolution_method="ADMIN",
                    is_fallback=False,
                    admin_override=override,
                )
                session.add(record)
                logger.info("Created settlement record %s", response_id)
            session.commit()
            return record.response_id

    def get_by_market(self, market_id: int) -> dict[str, Any] | None:
        with self._sessions() as session:
            record = session.scalars(
                select(SettlementRecord)
                .where(SettlementRecord.market_id == market_id)
                .order_by(SettlementRecord.created_at)
            ).first()
            if record is None:
                return None
            return {
                "response_id": record.response_id,
                "market_id": record.market_id,
                "question": record.question,
                "result": record.verdict,
                "confidence": record.confidence_bps,
                "tx_hash": record.tx_hash,
                "resolution_method": record.resolution_method,
                "is_fallback": record.is_fallback,
                "is_manual_settlement": record.admin_override is not None,
                "consensus": record.consensus,
                "admin_override": record.admin_override,
                "created_at": record.created_at.isoformat(),
            }
