"""Exceptions raised across the settlement oracle.

Recoverable problems (classification, discrete fallbacks, judge failures) are
encoded into result fields and never raised; only these escape a component.
"""


class OracleError(Exception):
    """Base class for settlement oracle errors."""


class ConfigurationError(OracleError):
    """Required configuration is missing or invalid."""


class AlreadySettledError(OracleError):
    """The market has already been settled on the ledger."""

    def __init__(self, market_id: int):
        super().__init__(f"Market {market_id} is already settled")
        self.market_id = market_id


class SubmissionError(OracleError):
    """A ledger transaction failed or was reverted."""


class NonceConflictError(SubmissionError):
    """The transaction's nonce collided with another pending transaction."""
