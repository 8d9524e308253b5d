"""
Capture retry policy helpers.

Purpose:
- Centralize the capped exponential backoff used by the session supervisor
- Keep the supervisor loop free of arithmetic

This module contains NO timers, NO async, NO side effects.
"""
from __future__ import annotations

from dataclasses import dataclass

from constants import (
    CAPTURE_MAX_RETRIES,
    CAPTURE_RETRY_BASE_MS,
    CAPTURE_RETRY_MAX_DELAY_MS,
)


@dataclass(frozen=True)
class RetryAttempt:
    """
    Immutable retry counter.

    Semantics:
    - attempt == 0: no restart has been scheduled since the last healthy data
    - attempt == N: N restarts have been scheduled in a row
    """
    attempt: int


@dataclass(frozen=True)
class BackoffPolicy:
    """Capped exponential backoff: min(base * 2^attempt, max_delay)."""
    base_ms: int = CAPTURE_RETRY_BASE_MS
    max_delay_ms: int = CAPTURE_RETRY_MAX_DELAY_MS
    max_retries: int = CAPTURE_MAX_RETRIES


def reset_attempt() -> RetryAttempt:
    """Returns a fresh retry attempt counter."""
    return RetryAttempt(attempt=0)


def next_attempt(current: RetryAttempt) -> RetryAttempt:
    """Return a new RetryAttempt with attempt incremented by 1."""
    return RetryAttempt(attempt=current.attempt + 1)


def should_retry(policy: BackoffPolicy, attempt: RetryAttempt) -> bool:
    """
    Returns True if another restart may be scheduled.

    attempt = number of restarts already scheduled since the last healthy data
    """
    return attempt.attempt < policy.max_retries


def get_retry_delay_ms(policy: BackoffPolicy, attempt: RetryAttempt) -> int:
    """Delay before the restart that follows `attempt` prior restarts."""
    # Clamp the exponent; 2**attempt grows without bound otherwise
    exponent = min(attempt.attempt, 30)
    return min(policy.base_ms * (2 ** exponent), policy.max_delay_ms)
