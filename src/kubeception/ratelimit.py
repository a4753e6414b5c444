"""Backoff policies for the reconcile queue.

A rate limiter answers one question: how long should an item wait before
it is processed again. Per-key exponential backoff and a global token
bucket are combined so that the slower of the two gates each requeue.
"""

import threading
import time
from collections.abc import Callable, Hashable
from typing import Protocol

# Defaults of the cluster controller
DEFAULT_BASE_DELAY = 0.005
DEFAULT_MAX_DELAY = 10.0
DEFAULT_QPS = 10.0
DEFAULT_BURST = 100


class RateLimiter(Protocol):
    """Interface shared by all rate limiters."""

    def when(self, item: Hashable) -> float:
        """Return the delay in seconds before *item* may be processed again."""
        ...

    def forget(self, item: Hashable) -> None:
        """Stop tracking *item*; its next failure starts from scratch."""
        ...

    def num_requeues(self, item: Hashable) -> int:
        """Return how many times *item* has been requeued."""
        ...


class ItemExponentialFailureRateLimiter:
    """Per-item exponential backoff: ``base_delay * 2**failures``, capped at ``max_delay``."""

    def __init__(self, base_delay: float = DEFAULT_BASE_DELAY, max_delay: float = DEFAULT_MAX_DELAY) -> None:
        if base_delay <= 0 or max_delay < base_delay:
            raise ValueError("base_delay must be positive and not greater than max_delay")
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._failures: dict[Hashable, int] = {}
        self._lock = threading.Lock()

    def when(self, item: Hashable) -> float:
        with self._lock:
            exp = self._failures.get(item, 0)
            self._failures[item] = exp + 1

        # Avoid float overflow on very long failure streaks
        if exp > 62:
            return self.max_delay
        return min(self.base_delay * (2**exp), self.max_delay)

    def forget(self, item: Hashable) -> None:
        with self._lock:
            self._failures.pop(item, None)

    def num_requeues(self, item: Hashable) -> int:
        with self._lock:
            return self._failures.get(item, 0)

    def __repr__(self) -> str:
        return f"ItemExponentialFailureRateLimiter(base_delay={self.base_delay!r}, max_delay={self.max_delay!r})"


class BucketRateLimiter:
    """Global token bucket bounding overall requeue throughput.

    Every call to :meth:`when` reserves one token. When the bucket is empty
    the reservation still succeeds, but the returned delay tells the caller
    how long to wait for the token to be refilled.
    """

    def __init__(
        self,
        qps: float = DEFAULT_QPS,
        burst: int = DEFAULT_BURST,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if qps <= 0 or burst < 1:
            raise ValueError("qps must be positive and burst at least 1")
        self.qps = qps
        self.burst = burst
        self._clock = clock
        self._tokens = float(burst)
        self._last = clock()
        self._lock = threading.Lock()

    def when(self, item: Hashable) -> float:
        with self._lock:
            now = self._clock()
            elapsed = max(0.0, now - self._last)
            self._last = now
            # Rounded so a full refill interval yields a whole token despite float error
            self._tokens = round(min(float(self.burst), self._tokens + elapsed * self.qps), 9)
            self._tokens -= 1.0
            if self._tokens >= 0:
                return 0.0
            return -self._tokens / self.qps

    def forget(self, item: Hashable) -> None:
        pass

    def num_requeues(self, item: Hashable) -> int:
        return 0

    def __repr__(self) -> str:
        return f"BucketRateLimiter(qps={self.qps!r}, burst={self.burst!r})"


class MaxOfRateLimiter:
    """Combine several limiters; the longest delay wins."""

    def __init__(self, *limiters: RateLimiter) -> None:
        if not limiters:
            raise ValueError("at least one rate limiter is required")
        self.limiters = limiters

    def when(self, item: Hashable) -> float:
        # Every limiter must see the call so its own bookkeeping advances
        return max(limiter.when(item) for limiter in self.limiters)

    def forget(self, item: Hashable) -> None:
        for limiter in self.limiters:
            limiter.forget(item)

    def num_requeues(self, item: Hashable) -> int:
        return max(limiter.num_requeues(item) for limiter in self.limiters)


def default_controller_rate_limiter(
    base_delay: float = DEFAULT_BASE_DELAY,
    max_delay: float = DEFAULT_MAX_DELAY,
    qps: float = DEFAULT_QPS,
    burst: int = DEFAULT_BURST,
) -> MaxOfRateLimiter:
    """Build the limiter used by the cluster controller."""
    return MaxOfRateLimiter(
        ItemExponentialFailureRateLimiter(base_delay, max_delay),
        BucketRateLimiter(qps, burst),
    )
