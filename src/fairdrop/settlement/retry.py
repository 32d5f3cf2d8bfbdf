"""Retry with backoff for transient store failures.

Only PersistenceError is retried. Every step the coordinator wraps is
idempotent under the paymentId gate, so a retry after an ambiguous
failure cannot double-apply. Fund-moving provider calls are never
wrapped here.
"""

from __future__ import annotations

import logging
import random
import time
from typing import Callable, TypeVar

from fairdrop.errors import PersistenceError
from fairdrop.policy.resolver import RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")


def backoff_delay(policy: RetryPolicy, attempt: int) -> float:
    """Exponential delay for ``attempt`` (1-based) with jitter, capped."""
    base = policy.base_delay_seconds * (2 ** (attempt - 1))
    jitter = random.random() * policy.base_delay_seconds
    return min(policy.max_delay_seconds, base + jitter)


def with_retry(
    operation: Callable[[], T],
    policy: RetryPolicy,
    step: str,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``operation``, retrying PersistenceError up to policy.attempts times."""
    for attempt in range(1, policy.attempts + 1):
        try:
            return operation()
        except PersistenceError as exc:
            if attempt == policy.attempts:
                logger.error("%s failed after %d attempts: %s", step, attempt, exc)
                raise
            delay = backoff_delay(policy, attempt)
            logger.warning(
                "%s hit a store failure (attempt %d/%d), retrying in %.2fs: %s",
                step, attempt, policy.attempts, delay, exc,
            )
            sleep(delay)
    raise AssertionError("unreachable")
