"""Bounded retry policy for ledger writes."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from .errors import NonceConflictError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_nonce_conflict(exc: BaseException) -> bool:
    """True for errors caused by two transactions competing for one account nonce."""
    return isinstance(exc, NonceConflictError) or "nonce" in str(exc).lower()


@dataclass(frozen=True)
class RetryPolicy:
    """Retry an attempt up to `max_attempts` times while `retry_on` accepts the error.

    The delay before retry n (1-based) is `delay * multiplier ** (n - 1)`;
    a multiplier of 1 gives a fixed backoff.
    """
    max_attempts: int = 3
    delay: float = 1.0
    multiplier: float = 1.0
    retry_on: Callable[[BaseException], bool] = is_nonce_conflict

    def backoff(self, retry_number: int) -> float:
        return self.delay * self.multiplier ** (retry_number - 1)

    async def run(self, attempt_fn: Callable[[int], Awaitable[T]]) -> T:
        """Call `attempt_fn(attempt_index)` until it succeeds or the policy gives up."""
        for attempt in range(self.max_attempts):
            try:
                return await attempt_fn(attempt)
            except Exception as e:
                retryable = self.retry_on(e)
                logger.warning(
                    "Attempt %d/%d failed%s: %s",
                    attempt + 1, self.max_attempts, " (retryable)" if retryable else "", e,
                )
                if not retryable or attempt + 1 >= self.max_attempts:
                    raise
                await asyncio.sleep(self.backoff(attempt + 1))
        raise RuntimeError("Unreachable")


NONCE_RETRY = RetryPolicy(max_attempts=3, delay=1.0, multiplier=1.0, retry_on=is_nonce_conflict)
