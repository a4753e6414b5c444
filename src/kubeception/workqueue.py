"""Deduplicating work queues for reconcile keys.

The queues in this module guarantee that a key is pending at most once
and processed by at most one worker at a time: a key added while it is
being processed is parked and handed out again only after ``done``.
"""

import heapq
import itertools
import threading
import time
from collections import deque
from collections.abc import Callable, Hashable

from icecream import ic

from kubeception.ratelimit import RateLimiter, default_controller_rate_limiter


class WorkQueue:
    """FIFO work queue with per-item deduplication.

    Draining is lossy: items still waiting when the queue is drained
    are discarded, not processed. Callers that need them again must re-add
    them after a restart, as the informers do when they relist.

    Attributes:
        name: Queue name, used in debug output.

    """

    def __init__(self, name: str = "") -> None:
        self.name = name
        self._queue: deque[Hashable] = deque()
        # Items that need processing
        self._dirty: set[Hashable] = set()
        # Items currently handed out to a worker
        self._processing: set[Hashable] = set()
        self._shutting_down = False
        self._cond = threading.Condition()

    def add(self, item: Hashable) -> None:
        """Mark *item* as needing processing."""
        with self._cond:
            if self._shutting_down or item in self._dirty:
                return
            self._dirty.add(item)
            if item in self._processing:
                return
            self._queue.append(item)
            self._cond.notify()

    def get(self, timeout: float | None = None) -> tuple[Hashable | None, bool]:
        """Block until an item is available.

        Args:
            timeout: Optional maximum wait in seconds.

        Returns:
            ``(item, shutdown)``. ``shutdown`` is True once the queue has been
            shut down and emptied; ``item`` is None when shutting down or when
            the timeout expired.

        """
        with self._cond:
            deadline = None if timeout is None else time.monotonic() + timeout
            while not self._queue and not self._shutting_down:
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return None, False
                self._cond.wait(remaining)

            if not self._queue:
                return None, True

            item = self._queue.popleft()
            self._processing.add(item)
            self._dirty.discard(item)
            return item, False

    def done(self, item: Hashable) -> None:
        """Mark *item* as processed, re-queueing it if it was added meanwhile."""
        with self._cond:
            self._processing.discard(item)
            if item in self._dirty:
                self._queue.append(item)
                self._cond.notify()
            elif not self._processing:
                self._cond.notify_all()

    def shut_down(self) -> None:
        """Stop accepting items and wake up all waiting workers."""
        with self._cond:
            self._shutting_down = True
            self._cond.notify_all()

    def shut_down_with_drain(self, timeout: float | None = None) -> bool:
        """Shut down and wait for in-flight items to be marked done.

        Pending items that were never handed out are discarded; workers
        receive the shutdown signal instead of them. Items already handed
        out are allowed to finish.

        Returns:
            True if all in-flight items finished before the timeout.

        """
        with self._cond:
            self._shutting_down = True
            self._queue.clear()
            self._dirty.clear()
            self._cond.notify_all()
            return self._cond.wait_for(lambda: not self._processing, timeout)

    @property
    def shutting_down(self) -> bool:
        with self._cond:
            return self._shutting_down

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, len={len(self)})"


class DelayingQueue(WorkQueue):
    """Work queue that can add items after a delay.

    Delayed items wait in a heap served by a background thread. When the
    same item is scheduled twice, the earlier ready time wins.
    """

    def __init__(self, name: str = "", clock: Callable[[], float] = time.monotonic) -> None:
        super().__init__(name)
        self._clock = clock
        self._heap: list[tuple[float, int, Hashable]] = []
        self._ready_at: dict[Hashable, float] = {}
        self._counter = itertools.count()
        self._waiting = threading.Condition()
        self._stopped = False
        self._waiter = threading.Thread(target=self._wait_loop, name=f"{name or 'queue'}-delay", daemon=True)
        self._waiter.start()

    def add_after(self, item: Hashable, delay: float) -> None:
        """Add *item* once *delay* seconds have passed."""
        if self.shutting_down:
            return
        if delay <= 0:
            self.add(item)
            return

        ready_at = self._clock() + delay
        with self._waiting:
            current = self._ready_at.get(item)
            if current is not None and current <= ready_at:
                return
            self._ready_at[item] = ready_at
            heapq.heappush(self._heap, (ready_at, next(self._counter), item))
            self._waiting.notify()

    def _wait_loop(self) -> None:
        while True:
            ready: list[Hashable] = []
            with self._waiting:
                if self._stopped:
                    return
                now = self._clock()
                while self._heap and self._heap[0][0] <= now:
                    ready_at, _, item = heapq.heappop(self._heap)
                    # Skip entries superseded by an earlier schedule
                    if self._ready_at.get(item) == ready_at:
                        del self._ready_at[item]
                        ready.append(item)
                if not ready:
                    wait = self._heap[0][0] - now if self._heap else None
                    self._waiting.wait(wait)
                    continue
            for item in ready:
                self.add(item)

    def pending_delayed(self) -> int:
        """Return how many items are waiting for their delay to pass."""
        with self._waiting:
            return len(self._ready_at)

    def shut_down(self) -> None:
        with self._waiting:
            self._stopped = True
            self._waiting.notify_all()
        super().shut_down()

    def shut_down_with_drain(self, timeout: float | None = None) -> bool:
        with self._waiting:
            self._stopped = True
            self._heap.clear()
            self._ready_at.clear()
            self._waiting.notify_all()
        return super().shut_down_with_drain(timeout)


class RateLimitingQueue(DelayingQueue):
    """Delaying queue whose requeue delay is decided by a rate limiter."""

    def __init__(
        self,
        rate_limiter: RateLimiter | None = None,
        name: str = "",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(name, clock)
        self.rate_limiter = rate_limiter if rate_limiter is not None else default_controller_rate_limiter()

    def add_with_backoff(self, item: Hashable) -> float:
        """Requeue *item* after the delay chosen by the rate limiter.

        Returns:
            The delay in seconds.

        """
        delay = self.rate_limiter.when(item)
        ic(item, delay)
        self.add_after(item, delay)
        return delay

    def forget(self, item: Hashable) -> None:
        """Clear the failure history of *item*. The item itself stays queued if pending."""
        self.rate_limiter.forget(item)

    def num_requeues(self, item: Hashable) -> int:
        return self.rate_limiter.num_requeues(item)
