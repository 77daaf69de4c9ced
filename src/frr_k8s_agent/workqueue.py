"""A de-duplicating work queue with delayed and rate limited re-adds.

Semantics follow the controller work queues found in Kubernetes clients:

* a key queued several times is only processed once;
* a key is never handed to two workers at the same time; adding it while
  it is being processed defers it until :meth:`WorkQueue.done` is called;
* failures are retried with a per-key exponential backoff.
"""

from __future__ import annotations

import logging
from collections import deque
from threading import Condition, Timer
from typing import Deque, Dict, Generic, Hashable, List, Optional, Set, TypeVar

LOG = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)

BASE_DELAY = 0.005
MAX_DELAY = 1000.0


class WorkQueue(Generic[K]):
    def __init__(self, base_delay: float = BASE_DELAY, max_delay: float = MAX_DELAY) -> None:
        self._queue: Deque[K] = deque()
        self._dirty: Set[K] = set()
        self._processing: Set[K] = set()
        self._failures: Dict[K, int] = {}
        self._timers: List[Timer] = []
        self._cond = Condition()
        self._shutting_down = False
        self._base_delay = base_delay
        self._max_delay = max_delay

    def __len__(self) -> int:
        with self._cond:
            return len(self._queue)

    @property
    def shutting_down(self) -> bool:
        with self._cond:
            return self._shutting_down

    def add(self, key: K) -> None:
        with self._cond:
            if self._shutting_down or key in self._dirty:
                return
            self._dirty.add(key)
            if key in self._processing:
                return
            self._queue.append(key)
            self._cond.notify()

    def get(self, timeout: Optional[float] = None) -> Optional[K]:
        """Return the next key, or ``None`` on shutdown or timeout."""

        with self._cond:
            if not self._cond.wait_for(
                lambda: self._queue or self._shutting_down, timeout=timeout
            ):
                return None
            if not self._queue:
                return None
            key = self._queue.popleft()
            self._processing.add(key)
            self._dirty.discard(key)
            return key

    def done(self, key: K) -> None:
        with self._cond:
            self._processing.discard(key)
            if key in self._dirty:
                self._queue.append(key)
                self._cond.notify()

    def add_after(self, key: K, delay: float) -> None:
        if delay <= 0:
            self.add(key)
            return
        timer = Timer(delay, self._fire, args=(key,))
        timer.daemon = True
        with self._cond:
            if self._shutting_down:
                return
            self._timers = [t for t in self._timers if t.is_alive()]
            self._timers.append(timer)
        timer.start()

    def _fire(self, key: K) -> None:
        self.add(key)

    def when(self, key: K) -> float:
        """Return the backoff delay for the next retry of ``key``."""

        with self._cond:
            failures = self._failures.get(key, 0)
            self._failures[key] = failures + 1
        return min(self._base_delay * (2 ** min(failures, 32)), self._max_delay)

    def add_rate_limited(self, key: K) -> None:
        self.add_after(key, self.when(key))

    def forget(self, key: K) -> None:
        with self._cond:
            self._failures.pop(key, None)

    def num_requeues(self, key: K) -> int:
        with self._cond:
            return self._failures.get(key, 0)

    def shutdown(self) -> None:
        with self._cond:
            self._shutting_down = True
            timers, self._timers = self._timers, []
            self._cond.notify_all()
        for timer in timers:
            timer.cancel()
