"""Retry decisions with exponential backoff.

This module provides:
- RetryContext: per-operation retry bookkeeping
- RetryDecision: outcome of a policy evaluation
- BackoffPolicy: pure mapping from (context, error) to a decision
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import dataclass, field

from dracolink.client.errors import (
    ApiError,
    RateLimited,
    ServerError,
    TransportError,
    Unauthenticated,
)
from dracolink.core.config import (
    DEFAULT_BASE_DELAY,
    DEFAULT_JITTER,
    DEFAULT_MAX_DELAY,
    DEFAULT_MAX_RETRIES,
    RetryConfig,
)

logger = logging.getLogger(__name__)


@dataclass
class RetryContext:
    """State of one logical request across its attempts.

    Attributes:
        attempt: Transient retries already performed (auth retries excluded).
        last_error: Error of the previous attempt.
        started_at: Monotonic start time of the operation.
        auth_refreshed: Whether the single forced token refresh was used.
    """

    attempt: int = 0
    last_error: ApiError | None = None
    started_at: float = field(default_factory=time.monotonic)
    auth_refreshed: bool = False

    @property
    def elapsed(self) -> float:
        """Seconds since the operation started."""
        return time.monotonic() - self.started_at


@dataclass(frozen=True)
class RetryDecision:
    """Outcome of BackoffPolicy.decide()."""

    retry: bool
    delay: float = 0.0
    refresh_auth: bool = False
    reason: str = ""

    @classmethod
    def give_up(cls, reason: str) -> RetryDecision:
        return cls(retry=False, reason=reason)


class BackoffPolicy:
    """Classifies failures and computes retry delays.

    - 401: one retry after a forced token refresh
    - 429 / 5xx / retryable transport errors: exponential backoff with jitter,
      honoring a larger Retry-After hint, up to max_retries
    - anything else: no retry
    """

    def __init__(
        self,
        max_retries: int = DEFAULT_MAX_RETRIES,
        base_delay: float = DEFAULT_BASE_DELAY,
        max_delay: float = DEFAULT_MAX_DELAY,
        jitter: float = DEFAULT_JITTER,
        max_elapsed: float | None = None,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the policy.

        Args:
            max_retries: Maximum transient retries per operation.
            base_delay: Delay for the first retry, in seconds.
            max_delay: Cap of the exponential delay before jitter, in seconds.
            jitter: Relative jitter (0.2 = ±20%).
            max_elapsed: Optional time budget for the whole operation.
            rng: Random source for jitter (seedable in tests).
        """
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter
        self.max_elapsed = max_elapsed
        self._rng = rng or random.Random()

    @classmethod
    def from_config(cls, config: RetryConfig, rng: random.Random | None = None) -> BackoffPolicy:
        """Build a policy from RetryConfig."""
        return cls(
            max_retries=config.max_retries,
            base_delay=config.base_delay,
            max_delay=config.max_delay,
            jitter=config.jitter,
            max_elapsed=config.max_elapsed,
            rng=rng,
        )

    def backoff_delay(self, attempt: int) -> float:
        """Jittered exponential delay for the given retry attempt (0-based).

        Jitter applies to the uncapped value, so the cap never pulls a delay
        below base_delay * 2^n * (1 - jitter). The result is clamped at
        max_delay * (1 + jitter).
        """
        raw = self.base_delay * (2**attempt) * (1 + self._rng.uniform(-self.jitter, self.jitter))
        return max(0.0, min(self.max_delay * (1 + self.jitter), raw))

    def decide(self, context: RetryContext, error: ApiError) -> RetryDecision:
        """Decide whether and when to retry after a failed attempt."""
        if isinstance(error, Unauthenticated):
            if context.auth_refreshed:
                return RetryDecision.give_up("authentication failed after token refresh")
            return RetryDecision(retry=True, refresh_auth=True, reason="token rejected")

        if isinstance(error, TransportError):
            if not error.retryable:
                return RetryDecision.give_up("non-retryable transport error")
        elif not isinstance(error, (RateLimited, ServerError)):
            return RetryDecision.give_up(f"{type(error).__name__} is not retryable")

        if context.attempt >= self.max_retries:
            return RetryDecision.give_up(f"retry ceiling of {self.max_retries} reached")

        delay = self.backoff_delay(context.attempt)
        retry_after = getattr(error, "retry_after", None)
        if retry_after is not None and retry_after > delay:
            delay = retry_after

        if self.max_elapsed is not None and context.elapsed + delay > self.max_elapsed:
            return RetryDecision.give_up(f"time budget of {self.max_elapsed}s exhausted")

        return RetryDecision(retry=True, delay=delay, reason=type(error).__name__)
