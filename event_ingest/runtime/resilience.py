"""
event_ingest.runtime.resilience

Shared resilience utilities: retries, politeness delays, token buckets.
"""

from __future__ import annotations

import random
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass


def is_retryable_status(status_code: int | None) -> bool:
    """429 and every 5xx are retryable; other statuses are not."""
    if status_code is None:
        return False
    return status_code == 429 or 500 <= status_code < 600


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    backoff_mode: str = "exp"  # exp | fixed | none
    base_delay_s: float = 1.0
    max_delay_s: float = 30.0
    jitter: float = 0.2

    def compute_backoff_s(self, attempt: int, *, jitter_sample: float | None = None) -> float:
        """
        attempt: 0..N (0 is the delay after the first failed try)

        Jitter only ever adds up to ``jitter`` of the raw delay and the cap is
        applied last, so the result is non-decreasing in ``attempt`` and never
        exceeds ``max_delay_s``.
        """
        if self.backoff_mode == "none":
            return 0.0
        if self.backoff_mode == "fixed":
            delay = self.base_delay_s
        else:
            delay = self.base_delay_s * (2 ** max(0, attempt))

        sample = random.random() if jitter_sample is None else jitter_sample
        if self.jitter > 0:
            delay += delay * self.jitter * sample
        return max(0.0, min(delay, self.max_delay_s))


class RateLimiter:
    """Enforce a minimum gap, plus optional random jitter, between calls."""

    def __init__(
        self,
        *,
        min_delay_s: float | None = None,
        jitter_s: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.min_delay_s = min_delay_s or 0.0
        self.jitter_s = jitter_s or 0.0
        self._sleep = sleep
        self._clock = clock
        self._last_call_s: float | None = None
        self._lock = threading.Lock()

    def wait(self) -> float:
        """Block until the politeness delay has elapsed; return seconds slept."""
        with self._lock:
            gap = self.min_delay_s
            if self.jitter_s:
                gap += random.random() * self.jitter_s
            pause = 0.0
            if self._last_call_s is not None:
                pause = max(0.0, gap - (self._clock() - self._last_call_s))
            if pause:
                self._sleep(pause)
            self._last_call_s = self._clock()
            return pause


class TokenBucket:
    """
    Process-local token bucket for a shared, externally rate-limited dependency.

    One instance lives for the whole orchestrator run, so unspent or overdrawn
    budget carries over from one cycle to the next.
    """

    def __init__(
        self,
        *,
        rate_per_s: float,
        capacity: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if rate_per_s <= 0:
            raise ValueError("rate_per_s must be positive")
        self.rate_per_s = float(rate_per_s)
        self.capacity = float(capacity if capacity is not None else max(1.0, rate_per_s))
        self._clock = clock
        self._sleep = sleep
        self._tokens = self.capacity
        self._last_refill_s = clock()
        self._lock = threading.Lock()

    @classmethod
    def for_budget(
        cls,
        max_rps: float,
        throttle_pct: float,
        **kwargs,
    ) -> TokenBucket:
        """Size the bucket to ``throttle_pct`` percent of a dependency's max rps."""
        if not 0 < throttle_pct <= 100:
            raise ValueError(f"throttle_pct must be in (0, 100], got {throttle_pct}")
        rate = max_rps * throttle_pct / 100.0
        kwargs.setdefault("capacity", 1.0)
        return cls(rate_per_s=rate, **kwargs)

    @property
    def available(self) -> float:
        with self._lock:
            self._refill()
            return self._tokens

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._last_refill_s)
        self._tokens = min(self.capacity, self._tokens + elapsed * self.rate_per_s)
        self._last_refill_s = now

    def delay_for(self, tokens: float = 1.0) -> float:
        """Seconds until ``tokens`` could be taken, without taking them."""
        with self._lock:
            self._refill()
            deficit = tokens - self._tokens
            return max(0.0, deficit / self.rate_per_s)

    def acquire(self, tokens: float = 1.0) -> float:
        """
        Take ``tokens`` from the bucket, sleeping for any deficit.

        Requests larger than the capacity are allowed; the bucket goes into
        debt and later callers wait for it to refill. Returns seconds slept.
        """
        if tokens <= 0:
            return 0.0
        with self._lock:
            self._refill()
            self._tokens -= tokens
            wait_s = max(0.0, -self._tokens / self.rate_per_s)
        if wait_s > 0:
            self._sleep(wait_s)
        return wait_s
