"""In-memory priority + delay queue for verification jobs (single process).

Jobs wait in one of two heaps:

* ready heap ``(priority, seq, item)`` for jobs that can run now;
* scheduled heap ``(ready_at, priority, seq, item)`` for retries with a delay.

``dequeue`` first promotes every scheduled item whose time has come, then pops
the best ready one, waiting on a condition variable otherwise. Keeping the two
apart means a far-future high-priority retry never hides a ready job.

Besides ordering, the queue hands out short-lived claims (``try_claim`` /
``release``) so that two workers never verify the same submission at once,
even if it was enqueued twice.
"""
from __future__ import annotations

import heapq
import threading
import time
from dataclasses import dataclass
from typing import Any, Optional

from ecopoints.config import QUEUE_SETTINGS
from ecopoints.utils import get_logger

logger = get_logger(__name__)


@dataclass(slots=True)
class QueueItem:
    job: Any
    priority_label: str
    priority_value: int
    enqueued_at: float
    ready_at: float
    seq: int


class PriorityDelayQueue:
    def __init__(self) -> None:
        priorities = QUEUE_SETTINGS.get("priorities", {})  # type: ignore[assignment]
        self._priority_map: dict[str, int] = priorities if isinstance(priorities, dict) else {"normal": 5}
        self._warn_depth = int(QUEUE_SETTINGS.get("warn_depth", 1000))  # type: ignore[arg-type]
        self._max_in_memory = int(QUEUE_SETTINGS.get("max_in_memory", 5000))  # type: ignore[arg-type]
        self._lock = threading.RLock()
        self._cv = threading.Condition(self._lock)
        self._ready_heap: list[tuple[int, int, QueueItem]] = []
        self._scheduled_heap: list[tuple[float, int, int, QueueItem]] = []
        self._claims: dict[str, float] = {}  # key -> claim expiry (monotonic)
        self._seq = 0
        self._shutdown = False

    def _promote_due(self) -> None:
        now = time.time()
        while self._scheduled_heap and self._scheduled_heap[0][0] <= now:
            _, priority_value, seq, item = heapq.heappop(self._scheduled_heap)
            heapq.heappush(self._ready_heap, (priority_value, seq, item))

    def _wait_for_work(self, timeout: Optional[float]) -> None:
        if self._ready_heap:
            return
        wait = timeout
        if self._scheduled_heap:
            until_due = max(0.0, self._scheduled_heap[0][0] - time.time())
            wait = until_due if wait is None else min(wait, until_due)
        if wait is None:
            self._cv.wait()
        elif wait > 0:
            self._cv.wait(timeout=wait)

    # ------------------------------- jobs ------------------------------- #
    def enqueue(self, job: Any, *, priority: str = "normal", delay_seconds: float = 0.0) -> QueueItem:
        with self._lock:
            if self._shutdown:
                raise RuntimeError("Queue shutdown")
            if self.depth() >= self._max_in_memory:
                raise OverflowError("Queue capacity exceeded")
            if priority not in self._priority_map:
                raise ValueError(f"Unknown priority '{priority}'")
            now = time.time()
            self._seq += 1
            item = QueueItem(
                job=job,
                priority_label=priority,
                priority_value=self._priority_map[priority],
                enqueued_at=now,
                ready_at=now + max(0.0, delay_seconds),
                seq=self._seq,
            )
            if item.ready_at <= now:
                heapq.heappush(self._ready_heap, (item.priority_value, item.seq, item))
            else:
                heapq.heappush(self._scheduled_heap, (item.ready_at, item.priority_value, item.seq, item))
            depth = self.depth()
            if depth >= self._warn_depth:
                logger.warning("Queue depth warning", depth=depth)
            self._cv.notify()
            return item

    def dequeue(self, *, block: bool = True, timeout: Optional[float] = None) -> Any:
        """Next ready job, or None when non-blocking and empty, on timeout, or after shutdown."""
        deadline = None if timeout is None else time.time() + timeout
        with self._lock:
            while True:
                if self._shutdown and not self._ready_heap and not self._scheduled_heap:
                    return None
                self._promote_due()
                if self._ready_heap:
                    return heapq.heappop(self._ready_heap)[2].job
                if not block:
                    return None
                remaining = None if deadline is None else deadline - time.time()
                if remaining is not None and remaining <= 0:
                    return None
                self._wait_for_work(remaining)

    # ------------------------------ claims ------------------------------ #
    def try_claim(self, key: str, ttl_seconds: float) -> bool:
        """Take the claim on ``key`` unless another worker holds an unexpired one."""
        now = time.monotonic()
        with self._lock:
            expires = self._claims.get(key)
            if expires is not None and expires > now:
                return False
            self._claims[key] = now + ttl_seconds
            return True

    def release(self, key: str) -> None:
        with self._lock:
            self._claims.pop(key, None)

    # ---------------------------- lifecycle ----------------------------- #
    def shutdown(self) -> None:
        with self._lock:
            self._shutdown = True
            self._cv.notify_all()

    def purge(self) -> None:
        """Drop every queued job and claim (test isolation)."""
        with self._lock:
            self._ready_heap.clear()
            self._scheduled_heap.clear()
            self._claims.clear()
            self._cv.notify_all()

    def health_check(self) -> bool:
        return not self._shutdown

    def depth(self) -> int:
        return len(self._ready_heap) + len(self._scheduled_heap)

    def __len__(self) -> int:  # pragma: no cover
        return self.depth()

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "backend": "memory",
                "depth": self.depth(),
                "ready": len(self._ready_heap),
                "scheduled": len(self._scheduled_heap),
                "claims": len(self._claims),
                "shutdown": self._shutdown,
            }


__all__ = ["PriorityDelayQueue", "QueueItem"]
