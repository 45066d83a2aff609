"""Retry policy for starting external processes.

Only the *start* of mongoexport (and of the SSH tunnel) is retried.  A
failure classified as a user error is never retried, since running the
same command again cannot fix a bad query or bad credentials.

Implementation: Uses tenacity library internally for battle-tested retry logic.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional, TypeVar

import tenacity
from tenacity.wait import wait_base

from mongo_extractor.lib.errors import UserError

logger = logging.getLogger(__name__)

__all__ = ["RetryConfig", "is_retryable", "retry_operation"]

T = TypeVar("T")

RETRY_MAX_ATTEMPTS = 5


def is_retryable(exc: BaseException) -> bool:
    """Everything except user-facing errors is worth another attempt."""
    return isinstance(exc, Exception) and not isinstance(exc, UserError)


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(
        self,
        max_attempts: int = RETRY_MAX_ATTEMPTS,
        backoff_seconds: float = 1.0,
        max_backoff_seconds: float = 30.0,
        jitter: bool = False,
        retry_if: Optional[Callable[[BaseException], bool]] = None,
    ):
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.max_backoff_seconds = max_backoff_seconds
        self.jitter = jitter
        self.retry_if = retry_if or is_retryable

    @classmethod
    def none(cls) -> "RetryConfig":
        """No retry - fail immediately."""
        return cls(max_attempts=1)

    @classmethod
    def default(cls) -> "RetryConfig":
        """Five attempts with exponential backoff."""
        return cls()

    def wait_strategy(self) -> wait_base:
        # Tenacity exponential: multiplier * 2^(attempt-1)
        wait: wait_base = tenacity.wait_exponential(
            multiplier=self.backoff_seconds,
            min=self.backoff_seconds,
            max=self.max_backoff_seconds,
        )
        if self.jitter:
            wait = wait + tenacity.wait_random(0, self.backoff_seconds * 0.5)
        return wait


def retry_operation(
    operation: Callable[[], T],
    config: RetryConfig,
    operation_name: str = "operation",
) -> T:
    """Execute an operation with retry logic.

    Args:
        operation: Callable to execute
        config: Retry configuration
        operation_name: Name for logging

    Returns:
        Result of the operation

    Example:
        process = retry_operation(
            lambda: subprocess.Popen(args, stdout=subprocess.PIPE),
            RetryConfig.default(),
            "mongoexport start",
        )
    """

    def before_sleep_handler(retry_state: tenacity.RetryCallState) -> None:
        """Log retry attempts."""
        exception = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "%s attempt %d/%d failed: %s. Retrying in %.1fs...",
            operation_name,
            retry_state.attempt_number,
            config.max_attempts,
            exception,
            retry_state.next_action.sleep if retry_state.next_action else 0,
        )

    retryer = tenacity.Retrying(
        stop=tenacity.stop_after_attempt(config.max_attempts),
        wait=config.wait_strategy(),
        retry=tenacity.retry_if_exception(config.retry_if),
        before_sleep=before_sleep_handler,
        reraise=True,
    )

    try:
        return retryer(operation)
    except Exception as e:
        if config.retry_if(e):
            logger.error(
                "%s failed after %d attempts",
                operation_name,
                config.max_attempts,
            )
        raise
