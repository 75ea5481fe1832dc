"""Retry policies, backoff curves and error classification."""

import asyncio
import errno
from typing import Callable
from pydantic import BaseModel, Field

from .errors import QueueClearedError, RetriableError, TerminalItemError

RETRIABLE_STATUS_CODES = frozenset({429})
RETRIABLE_ERROR_CODES = frozenset({"ECONNRESET", "ETIMEDOUT", "ENOTFOUND", "ECONNREFUSED"})
RETRIABLE_ERRNOS = frozenset({errno.ECONNRESET, errno.ETIMEDOUT, errno.ECONNREFUSED})
RETRIABLE_MESSAGE_MARKERS = ("rate limit", "429", "connection error") + tuple(
    code.lower() for code in RETRIABLE_ERROR_CODES
)


def exponential_backoff(base_delay: float, retry_number: int) -> float:
    """base, 2*base, 4*base, ... for retry 1, 2, 3, ..."""
    return base_delay * (2 ** (retry_number - 1))


def linear_backoff(base_delay: float, attempt: int) -> float:
    return base_delay * attempt


def is_retriable_error(exc: BaseException) -> bool:
    """Default classifier: rate-limit and network-class errors are transient."""
    if isinstance(exc, RetriableError):
        return True
    if isinstance(exc, (TerminalItemError, QueueClearedError)):
        return False
    if isinstance(exc, (ConnectionError, TimeoutError, asyncio.TimeoutError)):
        return True

    for attr in ("status", "status_code"):
        if getattr(exc, attr, None) in RETRIABLE_STATUS_CODES:
            return True
    if getattr(exc, "code", None) in RETRIABLE_ERROR_CODES:
        return True
    if isinstance(exc, OSError) and exc.errno in RETRIABLE_ERRNOS:
        return True

    message = str(exc).lower()
    return any(marker in message for marker in RETRIABLE_MESSAGE_MARKERS)


def retry_unless_terminal(exc: BaseException) -> bool:
    """Opt-in item classifier: retry everything but an explicit terminal error."""
    return not isinstance(exc, (TerminalItemError, QueueClearedError))


class RetryPolicy(BaseModel):
    """How many times to retry, how long to wait, and what to retry."""
    max_retries: int = Field(default=3, ge=0)
    base_delay: float = Field(default=1.0, ge=0)  # seconds
    backoff: Callable[[float, int], float] = exponential_backoff
    is_retriable: Callable[[BaseException], bool] = is_retriable_error

    def should_retry(self, exc: BaseException, retries_so_far: int) -> bool:
        return retries_so_far < self.max_retries and self.is_retriable(exc)

    def delay_for(self, retry_number: int) -> float:
        """Delay before the given retry (1-based)."""
        return self.backoff(self.base_delay, retry_number)
