"""
Settlement Oracle — CLI entry point.

Usage:
    settlement-oracle create "Is Bitcoin above $100,000?" --duration 60 [--consortium]
    settlement-oracle request-settlement --market-id 0
    settlement-oracle settle --market-id 0
    settlement-oracle admin-settle --market-id 0 --outcome YES --source "https://..."
    settlement-oracle status --market-id 0
"""

import argparse
import asyncio
import json
import logging
import sys

import httpx
from dotenv import load_dotenv

from .admin import AdminOverride
from .chain import LedgerClient
from .classifier import OracleClassifier
from .config import Settings
from .discrete import DiscreteResolver
from .errors import OracleError
from .judge import ConsensusEngine
from .orchestrator import MarketCreator, SettlementOrchestrator, request_settlement as request_market_settlement
from .providers import build_reasoner
from .store import AuditSink, SpecStore, create_session_factory
from .submission import SubmissionPipeline
from .types import Verdict

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


async def create_market(settings: Settings, question: str, duration: int | None, consortium: bool) -> None:
    ledger = LedgerClient.from_settings(settings)
    sessions = create_session_factory(settings.database_url)
    reasoner = build_reasoner(settings)
    classifier = OracleClassifier(reasoner, SpecStore(sessions)) if reasoner else None
    if classifier is None:
        logger.warning("Reasoning service not configured; market will not be classified")

    try:
        receipt = await MarketCreator(ledger, classifier).create(question, duration, consortium)
    finally:
        await ledger.close()

    print(json.dumps(receipt.model_dump(mode="json"), indent=2))


async def request_settlement(settings: Settings, market_id: int) -> None:
    ledger = LedgerClient.from_settings(settings)
    try:
        tx_hash = await request_market_settlement(ledger, market_id)
    finally:
        await ledger.close()
    if tx_hash:
        print(f"\nSettlement requested: {tx_hash}")


async def settle_market(settings: Settings, market_id: int) -> None:
    ledger = LedgerClient.from_settings(settings)
    sessions = create_session_factory(settings.database_url)
    reasoner = build_reasoner(settings)
    consensus = ConsensusEngine(reasoner, timeout=settings.judge_timeout) if reasoner else None

    try:
        async with httpx.AsyncClient() as http:
            runner = SettlementOrchestrator(
                ledger,
                DiscreteResolver(SpecStore(sessions), http),
                consensus,
                SubmissionPipeline(ledger),
                AuditSink(sessions),
            )
            receipt = await runner.settle(market_id)
    finally:
        await ledger.close()

    result = receipt.result
    print("\n" + "=" * 60)
    print("SETTLEMENT ORACLE — RESOLUTION REPORT")
    print("=" * 60)
    print(f"Market #{market_id}: {receipt.question}\n")
    if result.consensus is not None:
        for vote in result.consensus.votes:
            print(f"  [Judge {vote.judge_index}] {vote.verdict.value} ({vote.confidence_bps} bps)")
        print(f"\n  {result.consensus.summary}")
    print(f"  Method:     {result.method.value}{' (fallback)' if result.is_fallback else ''}")
    print(f"  Final:      {result.verdict.value} ({receipt.report.confidence_bps} bps)")
    print(f"  Response:   {receipt.report.response_id}")
    print("=" * 60 + "\n")
    print(f"Transaction: {receipt.tx_hash}")


async def admin_settle(settings: Settings, market_id: int, outcome: str, source: str, comments: str) -> None:
    ledger = LedgerClient.from_settings(settings)
    audit = AuditSink(create_session_factory(settings.database_url))
    try:
        receipt = await AdminOverride(ledger, audit).settle(market_id, Verdict(outcome), source, comments)
    finally:
        await ledger.close()
    print(f"\nMarket #{market_id} manually settled as {receipt.verdict.value}")
    print(f"Transaction: {receipt.tx_hash}")


def show_status(settings: Settings, market_id: int) -> None:
    audit = AuditSink(create_session_factory(settings.database_url))
    record = audit.get_by_market(market_id)
    print(json.dumps({"market_id": market_id, "settlement": record}, indent=2, default=str))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Settlement Oracle — automated prediction market resolver")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create", help="Create a market and classify its question")
    create.add_argument("question")
    create.add_argument("--duration", type=int, default=None, help="Market duration in seconds (min 10)")
    create.add_argument("--consortium", action="store_true", help="Resolve with a 5-judge panel")

    request = sub.add_parser("request-settlement", help="Move an Open market to SettlementRequested")
    request.add_argument("--market-id", type=int, required=True)

    settle = sub.add_parser("settle", help="Resolve a market and submit the report on-chain")
    settle.add_argument("--market-id", type=int, required=True)

    admin = sub.add_parser("admin-settle", help="Manually settle a market")
    admin.add_argument("--market-id", type=int, required=True)
    admin.add_argument("--outcome", choices=["YES", "NO"], required=True)
    admin.add_argument("--source", required=True, help="Evidence source for the manual outcome")
    admin.add_argument("--comments", default="")

    status = sub.add_parser("status", help="Show the stored settlement record for a market")
    status.add_argument("--market-id", type=int, required=True)
    return parser


def main() -> None:
    args = build_parser().parse_args()

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    load_dotenv()

    try:
        settings = Settings.from_env()
        if args.command == "create":
            asyncio.run(create_market(settings, args.question, args.duration, args.consortium))
        elif args.command == "request-settlement":
            asyncio.run(request_settlement(settings, args.market_id))
        elif args.command == "settle":
            asyncio.run(settle_market(settings, args.market_id))
        elif args.command == "admin-settle":
            asyncio.run(admin_settle(settings, args.market_id, args.outcome, args.source, args.comments))
        elif args.command == "status":
            show_status(settings, args.market_id)
    except (OracleError, ValueError) as e:
        logger.error("%s failed: %s", args.command, e)
        sys.exit(1)


if __name__ == "__main__":
    main()
