"""
Retry with exponential backoff for calls that cross a process boundary.

Every external call site (embedding provider, topic labeler, Firestore writes)
goes through one RetryPolicy instead of carrying its own retry loop. Calls are
serialized: the policy sleeps between attempts, it never fans out.

Usage:
    policy = RetryPolicy(max_attempts=3, initial_backoff=1.0)
    response = policy.call(lambda: client.models.embed_content(model=name, contents=batch), "embed batch 1/4")
"""

import logging
import random
import re
import time
from dataclasses import dataclass, field
from typing import Callable, Optional, Tuple, Type, TypeVar

from google.api_core.exceptions import (
    DeadlineExceeded,
    GoogleAPICallError,
    InternalServerError,
    ResourceExhausted,
    ServiceUnavailable,
)
from google.genai import errors as genai_errors

logger = logging.getLogger(__name__)

T = TypeVar('T')

# Exceptions raised by Google clients for rate limits and server-side hiccups
TRANSIENT_EXCEPTIONS = (
    ResourceExhausted,
    InternalServerError,
    ServiceUnavailable,
    DeadlineExceeded,
    ConnectionError,
    TimeoutError,
)

# Fallback for SDKs that surface HTTP status only in the message: a leading
# status code ("503 Service Unavailable") or a whole-word phrase
TRANSIENT_STATUS_PATTERN = re.compile(r'^\s*(429|500|502|503|504)\b')
TRANSIENT_PHRASE_PATTERN = re.compile(
    r'\b(rate limit(ed|s)?|rate-limited|too many requests|quota exceeded|resource exhausted|'
    r'overloaded|service unavailable|temporarily unavailable|internal server error|'
    r'deadline exceeded|timed out|timeout)\b',
    re.IGNORECASE,
)


def is_transient_error(error: BaseException) -> bool:
    """
    Decide whether an error is worth retrying.

    Args:
        error: Exception raised by the external call

    Returns:
        True for rate limiting, timeouts and 5xx style failures
    """
    if isinstance(error, TRANSIENT_EXCEPTIONS):
        return True

    # Gen AI SDK errors carry the HTTP status
    if isinstance(error, genai_errors.ServerError):
        return True
    if isinstance(error, genai_errors.ClientError):
        return getattr(error, "code", None) == 429

    # Any other google.api_core error already told us its status by type
    if isinstance(error, GoogleAPICallError):
        return False

    message = str(error)
    return bool(TRANSIENT_STATUS_PATTERN.match(message) or TRANSIENT_PHRASE_PATTERN.search(message))


@dataclass
class RetryPolicy:
    """
    Bounded retry with exponential delay and optional jitter.

    Args:
        max_attempts: Total attempts including the first call
        initial_backoff: Delay in seconds before the second attempt
        max_backoff: Upper bound for a single delay
        multiplier: Growth factor between delays
        jitter: Fraction of the current delay added at random (0 disables)
        should_retry: Predicate deciding if an error is retriable
        sleep: Sleep function (injectable for tests)
    """

    max_attempts: int = 3
    initial_backoff: float = 1.0
    max_backoff: float = 30.0
    multiplier: float = 2.0
    jitter: float = 0.0
    should_retry: Callable[[BaseException], bool] = is_transient_error
    retry_on: Tuple[Type[BaseException], ...] = (Exception,)
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.initial_backoff < 0 or self.max_backoff < 0:
            raise ValueError("Backoff values must be non-negative")

    def delays(self):
        """Yield the delay used after each failed attempt (without jitter)."""
        backoff = self.initial_backoff
        for _ in range(self.max_attempts - 1):
            yield min(backoff, self.max_backoff)
            backoff = min(backoff * self.multiplier, self.max_backoff)

    def call(self, operation: Callable[[], T], description: str = "operation") -> T:
        """
        Run an operation, retrying transient failures.

        Args:
            operation: Zero-argument callable performing the external call
            description: Short label used in log messages

        Returns:
            Whatever the operation returns

        Raises:
            The last exception once attempts are exhausted, or immediately
            when the error is not retriable
        """
        delays = list(self.delays())
        last_error: Optional[BaseException] = None

        for attempt in range(1, self.max_attempts + 1):
            try:
                return operation()
            except self.retry_on as e:
                last_error = e
                retriable = self.should_retry(e)

                if not retriable or attempt >= self.max_attempts:
                    logger.error(
                        f"{description} failed after {attempt} attempt(s): {e}"
                    )
                    raise

                delay = delays[attempt - 1]
                if self.jitter:
                    delay += random.uniform(0, self.jitter * delay)

                logger.warning(
                    f"{description} failed (attempt {attempt}/{self.max_attempts}): {e}. "
                    f"Retrying after {delay:.1f}s"
                )
                self.sleep(delay)

        # Loop always returns or raises
        raise last_error  # pragma: no cover
