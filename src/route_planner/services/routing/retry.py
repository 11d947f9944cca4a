"""Exponential backoff for transient routing failures."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, TypeVar

from ...config import settings
from .errors import RouteOptimizationError, UnknownRouteError
from .rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    max_attempts: int = settings.retry_max_attempts
    initial_delay: float = settings.retry_initial_delay_seconds
    backoff_multiplier: float = settings.retry_backoff_multiplier
    max_delay: float = settings.retry_max_delay_seconds

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after the given (1-based) failed attempt."""
        delay = self.initial_delay * (self.backoff_multiplier ** (attempt - 1))
        return min(delay, self.max_delay)


def _default_classifier(error: Exception) -> RouteOptimizationError:
    return UnknownRouteError(str(error) or "Unknown error occurred", error)


def call_with_retry(
    operation: Callable[[], T],
    *,
    policy: RetryPolicy,
    rate_limiter: RateLimiter,
    classify: Callable[[Exception], RouteOptimizationError] = _default_classifier,
    sleep: Callable[[float], None] = time.sleep,
    description: str = "request",
) -> T:
    """Run ``operation`` under the rate limiter, retrying transient failures.

    Only errors whose kind is retryable are attempted again, up to
    ``policy.max_attempts`` attempts in total. The last classified error is
    raised with the original exception chained.
    """
    attempt = 1
    while True:
        rate_limiter.acquire(sleep)
        try:
            return operation()
        except RouteOptimizationError as error:
            classified = error
        except Exception as exc:
            classified = classify(exc)

        if classified.retryable and attempt < policy.max_attempts:
            delay = policy.delay_for(attempt)
            logger.warning(
                f"{description} failed with {classified.kind.value} "
                f"(attempt {attempt}/{policy.max_attempts}). Retrying in {delay:.1f}s..."
            )
            sleep(delay)
            attempt += 1
            continue

        if classified.retryable:
            logger.error(f"{description} failed after {attempt} attempts: {classified.message}")
        raise classified from classified.cause
