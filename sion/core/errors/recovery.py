"""
Error classification and retry policy.

Errors are classified as recoverable (a read-only call may be retried) or
unrecoverable. Mutating operations are never retried regardless of the
classification; that decision belongs to the caller.
"""

import asyncio
import logging
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

import httpx

from .taxonomy import (
    DataUnavailable,
    InvalidArguments,
    SimulationFailed,
    SionError,
    SubmissionFailed,
    Unauthorized,
    UnknownTool,
)

T = TypeVar("T")

logger = logging.getLogger(__name__)


class ErrorCategory(str, Enum):
    """Categories of errors for recovery decisions."""

    NETWORK = "network"
    RATE_LIMIT = "rate_limit"
    TIMEOUT = "timeout"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    TRANSACTION_FAILED = "transaction_failed"
    SLIPPAGE = "slippage"
    PROVIDER = "provider"
    DATA_UNAVAILABLE = "data_unavailable"
    VALIDATION = "validation"
    AUTHENTICATION = "authentication"
    UNKNOWN = "unknown"


@dataclass
class ErrorContext:
    """Classification result for an exception."""

    category: ErrorCategory = ErrorCategory.UNKNOWN
    recoverable: bool = True
    retry_after_seconds: Optional[float] = None
    suggested_action: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


_MESSAGE_PATTERNS = (
    (
        ("rate limit", "too many requests", "429", "throttl", "quota exceeded"),
        ErrorContext(ErrorCategory.RATE_LIMIT, True, 5.0, "Wait before retrying"),
    ),
    (
        ("timeout", "timed out", "deadline"),
        ErrorContext(ErrorCategory.TIMEOUT, True, 1.0, "Retry with longer timeout"),
    ),
    (
        ("blockhash not found", "node is behind", "connection", "network", "unreachable", "refused", "dns", "socket"),
        ErrorContext(ErrorCategory.NETWORK, True, 1.0, "Check RPC connectivity"),
    ),
    (
        ("insufficient", "not enough", "exceeds balance", "insufficient lamports"),
        ErrorContext(ErrorCategory.INSUFFICIENT_FUNDS, False, None, "Add funds to the agent wallet"),
    ),
    (
        ("slippage", "price impact", "0x1771"),
        ErrorContext(ErrorCategory.SLIPPAGE, False, None, "Retry with a higher slippage tolerance"),
    ),
    (
        ("custom program error", "instruction error", "transaction failed", "already in use"),
        ErrorContext(ErrorCategory.TRANSACTION_FAILED, False, None, "Review transaction parameters"),
    ),
)


def classify_error(error: BaseException) -> ErrorContext:
    """
    Classify an exception and return its error context.

    Domain errors are classified by type, httpx errors by status code or
    transport failure, everything else by message patterns.
    """
    if isinstance(error, DataUnavailable):
        return ErrorContext(ErrorCategory.DATA_UNAVAILABLE, False, suggested_action="Report the data as unavailable")
    if isinstance(error, (InvalidArguments, UnknownTool)):
        return ErrorContext(ErrorCategory.VALIDATION, False, suggested_action="Fix the tool call")
    if isinstance(error, Unauthorized):
        return ErrorContext(ErrorCategory.AUTHENTICATION, False)
    if isinstance(error, (SimulationFailed, SubmissionFailed)):
        return ErrorContext(ErrorCategory.TRANSACTION_FAILED, False, suggested_action="Review transaction parameters")

    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        if status == 429:
            retry_after = _parse_retry_after(error.response.headers.get("retry-after"))
            return ErrorContext(ErrorCategory.RATE_LIMIT, True, retry_after, "Wait before retrying", {"status": status})
        if status in (401, 403):
            return ErrorContext(ErrorCategory.AUTHENTICATION, False, details={"status": status})
        if status == 404:
            return ErrorContext(ErrorCategory.DATA_UNAVAILABLE, False, details={"status": status})
        if status >= 500:
            return ErrorContext(ErrorCategory.PROVIDER, True, 1.0, "Provider outage, retry", {"status": status})
        return ErrorContext(ErrorCategory.VALIDATION, False, details={"status": status})
    if isinstance(error, httpx.TimeoutException):
        return ErrorContext(ErrorCategory.TIMEOUT, True, 1.0, "Retry with longer timeout")
    if isinstance(error, httpx.TransportError):
        return ErrorContext(ErrorCategory.NETWORK, True, 1.0, "Check network connectivity")
    if isinstance(error, asyncio.TimeoutError):
        return ErrorContext(ErrorCategory.TIMEOUT, True, 1.0, "Retry with longer timeout")

    message = str(error).lower()
    for patterns, template in _MESSAGE_PATTERNS:
        if any(p in message for p in patterns):
            return ErrorContext(
                category=template.category,
                recoverable=template.recoverable,
                retry_after_seconds=template.retry_after_seconds,
                suggested_action=template.suggested_action,
            )

    if isinstance(error, SionError):
        return ErrorContext(ErrorCategory.UNKNOWN, error.retryable)

    # Unclassified failures of read-only calls are worth another attempt
    return ErrorContext(ErrorCategory.UNKNOWN, True, suggested_action="Retry operation")


def _parse_retry_after(raw: Optional[str]) -> Optional[float]:
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError:
        return None


@dataclass
class RetryPolicy:
    """Exponential backoff with jitter for read-only operations."""

    max_attempts: int = 3
    initial_delay_seconds: float = 0.5
    max_delay_seconds: float = 8.0
    exponential_base: float = 2.0
    jitter: bool = True
    jitter_factor: float = 0.1

    def get_delay(self, attempt: int, error: Optional[BaseException] = None) -> float:
        """Calculate delay before retrying after ``attempt`` (0-based) failed."""
        delay = min(
            self.initial_delay_seconds * (self.exponential_base ** attempt),
            self.max_delay_seconds,
        )
        if error is not None:
            hinted = classify_error(error).retry_after_seconds
            if hinted is not None and self.initial_delay_seconds > 0:
                delay = min(max(delay, hinted), self.max_delay_seconds)
        if self.jitter and delay > 0:
            jitter_range = delay * self.jitter_factor
            delay += random.uniform(-jitter_range, jitter_range)
        return max(delay, 0.0)

    def should_retry(self, error: BaseException, attempt: int) -> bool:
        if attempt >= self.max_attempts - 1:
            return False
        return classify_error(error).recoverable

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        description: str = "operation",
    ) -> T:
        """Await ``operation`` until it succeeds or a failure is not retryable.

        The last failure propagates unchanged.
        """
        attempt = 0
        while True:
            try:
                return await operation()
            except Exception as exc:
                if not self.should_retry(exc, attempt):
                    raise
                delay = self.get_delay(attempt, exc)
                logger.warning(
                    "%s attempt %d/%d failed: %s. Retrying in %.2fs",
                    description,
                    attempt + 1,
                    self.max_attempts,
                    exc,
                    delay,
                )
                await asyncio.sleep(delay)
                attempt += 1


NO_RETRY = RetryPolicy(max_attempts=1)
