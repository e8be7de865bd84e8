"""EVM ledger integration for the settlement oracle.

Reads markets from and submits transactions to the prediction market
contract. Uses web3.py for RPC and contract calls, eth-account for signing
and eth-abi for the settlement report codec.
"""

import logging
from typing import Any

from eth_abi import decode, encode
from eth_account import Account
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3

from .config import DEFAULT_GAS_LIMIT, Settings
from .errors import NonceConflictError, SubmissionError
from .retry import is_nonce_conflict
from .types import MarketInfo, MarketStatus, Outcome, SettlementReport

logger = logging.getLogger(__name__)

# Must match the report decoder in the market contract's onReport.
REPORT_TYPES = ["uint256", "uint8", "uint16", "string"]

_MARKET_STRUCT = {
    "name": "",
    "type": "tuple",
    "components": [
        {"name": "question", "type": "string"},
        {"name": "marketOpen", "type": "uint256"},
        {"name": "marketClose", "type": "uint256"},
        {"name": "status", "type": "uint8"},
        {"name": "outcome", "type": "uint8"},
        {"name": "settledAt", "type": "uint256"},
        {"name": "evidenceURI", "type": "string"},
        {"name": "confidenceBps", "type": "uint16"},
        {"name": "predCounts", "type": "uint256[2]"},
        {"name": "predTotals", "type": "uint256[2]"},
    ],
}


def _fn(name: str, inputs: list[tuple[str, str]], outputs: list[dict] | None = None, view: bool = False) -> dict:
    return {
        "type": "function",
        "name": name,
        "stateMutability": "view" if view else "nonpayable",
        "inputs": [{"name": n, "type": t} for n, t in inputs],
        "outputs": outputs or [],
    }


MARKET_ABI = [
    _fn("newMarket", [("question", "string"), ("duration", "uint256")], [{"name": "", "type": "uint256"}]),
    _fn("nextMarketId", [], [{"name": "", "type": "uint256"}], view=True),
    _fn("getMarket", [("marketId", "uint256")], [_MARKET_STRUCT], view=True),
    _fn("requestSettlement", [("marketId", "uint256")]),
    _fn("onReport", [("metadata", "bytes"), ("report", "bytes")]),
    _fn("submitReport", [("marketId", "uint256"), ("outcome", "uint8"), ("confidence", "uint16"), ("responseId", "string")]),
    _fn("settleMarketManually", [("marketId", "uint256"), ("outcome", "uint8")]),
]


def encode_report(report: SettlementReport) -> bytes:
    """ABI-encode a report as (uint256 marketId, uint8 outcome, uint16 confidenceBp, string responseId)."""
    return encode(
        REPORT_TYPES,
        [report.market_id, report.outcome_code, report.confidence_bps, report.response_id],
    )


def decode_report(data: bytes) -> SettlementReport:
    market_id, outcome_code, confidence_bps, response_id = decode(REPORT_TYPES, data)
    return SettlementReport(
        market_id=market_id,
        outcome_code=outcome_code,
        confidence_bps=confidence_bps,
        response_id=response_id,
    )


def market_from_struct(market_id: int, raw: Any) -> MarketInfo:
    """Build MarketInfo from the getMarket tuple."""
    return MarketInfo(
        id=market_id,
        question=raw[0],
        market_open=int(raw[1]),
        market_close=int(raw[2]),
        status=MarketStatus(int(raw[3])),
        outcome=Outcome(int(raw[4])),
        settled_at=int(raw[5]),
        evidence_uri=raw[6],
        confidence_bps=int(raw[7]),
    )


class LedgerClient:
    """Signed access to the market contract for one funding account."""

    def __init__(self, w3: AsyncWeb3, account: Any, market_address: str, gas_limit: int = DEFAULT_GAS_LIMIT):
        self.w3 = w3
        self.account = account
        self.gas_limit = gas_limit
        self.contract = w3.eth.contract(address=Web3.to_checksum_address(market_address), abi=MARKET_ABI)

    @classmethod
    def from_settings(cls, settings: Settings) -> "LedgerClient":
        settings.require_ledger()
        w3 = AsyncWeb3(AsyncHTTPProvider(settings.rpc_url))
        account = Account.from_key(settings.private_key)
        return cls(w3, account, settings.market_address, settings.gas_limit)

    async def close(self) -> None:
        disconnect = getattr(self.w3.provider, "disconnect", None)
        if disconnect is not None:
            await disconnect()

    # --- Reads ---

    async def get_market(self, market_id: int) -> MarketInfo:
        raw = await self.contract.functions.getMarket(market_id).call()
        return market_from_struct(market_id, raw)

    async def next_market_id(self) -> int:
        return int(await self.contract.functions.nextMarketId().call())

    async def pending_nonce(self) -> int:
        return int(await self.w3.eth.get_transaction_count(self.account.address, "pending"))

    # --- Writes ---

    async def _transact(self, call: Any, label: str, nonce: int | None = None) -> str:
        """Sign, send and confirm one contract call. Returns the tx hash."""
        try:
            if nonce is None:
                nonce = await self.pending_nonce()
            tx = await call.build_transaction({
                "from": self.account.address,
                "nonce": nonce,
                "gas": self.gas_limit,
            })
            signed = self.account.sign_transaction(tx)
            tx_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
            tx_hex = Web3.to_hex(tx_hash)
            logger.info("%s tx sent (nonce %d): %s", label, nonce, tx_hex)
            receipt = await self.w3.eth.wait_for_transaction_receipt(tx_hash)
        except Exception as e:
            if is_nonce_conflict(e):
                raise NonceConflictError(f"{label} nonce conflict: {e}") from e
            raise SubmissionError(f"{label} transaction failed: {e}") from e

        if receipt["status"] != 1:
            raise SubmissionError(f"{label} transaction reverted: {tx_hex}")
        logger.info("%s tx confirmed: %s", label, tx_hex)
        return tx_hex

    async def new_market(self, question: str, duration: int, nonce: int) -> str:
        return await self._transact(
            self.contract.functions.newMarket(question, duration), "newMarket", nonce=nonce
        )

    async def request_settlement(self, market_id: int) -> str:
        return await self._transact(
            self.contract.functions.requestSettlement(market_id), "requestSettlement"
        )

    async def on_report(self, metadata: bytes, report: bytes) -> str:
        return await self._transact(self.contract.functions.onReport(metadata, report), "onReport")

    async def submit_report(self, market_id: int, outcome: int, confidence: int, response_id: str) -> str:
        return await self._transact(
            self.contract.functions.submitReport(market_id, outcome, confidence, response_id),
            "submitReport",
        )

    async def settle_market_manually(self, market_id: int, outcome: int) -> str:
        return await self._transact(
            self.contract.functions.settleMarketManually(market_id, outcome), "settleMarketManually"
        )
