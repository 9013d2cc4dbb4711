"""Exponential backoff helpers with jitter."""
from __future__ import annotations

import random
import time
from typing import Callable, Optional, Tuple, Type, TypeVar

from ecopoints.config import BACKOFF_POLICY

T = TypeVar("T")


def compute_backoff_seconds(attempt: int, *, base: Optional[float] = None, factor: Optional[float] = None, max_seconds: Optional[float] = None, jitter_pct: Optional[float] = None) -> float:
    """Delay before retry number ``attempt`` (1-based): base * factor**(attempt-1), capped, jittered."""
    if attempt < 1:
        attempt = 1
    base = float(base if base is not None else BACKOFF_POLICY["base_seconds"])
    factor = float(factor if factor is not None else BACKOFF_POLICY["factor"])
    max_seconds = float(max_seconds if max_seconds is not None else BACKOFF_POLICY["max_seconds"])
    jitter_pct = float(jitter_pct if jitter_pct is not None else BACKOFF_POLICY["jitter_pct"])

    delay = base * (factor ** (attempt - 1))
    delay = min(delay, max_seconds)
    if jitter_pct > 0:
        jitter_amount = delay * jitter_pct
        delay = random.uniform(delay - jitter_amount, delay + jitter_amount)
    return max(delay, 0.0)


def max_attempts() -> int:
    return int(BACKOFF_POLICY["max_attempts"])


def retry_call(
    fn: Callable[[], T],
    *,
    retry_on: Tuple[Type[BaseException], ...],
    attempts: Optional[int] = None,
    sleep: Callable[[float], None] = time.sleep,
    on_retry: Optional[Callable[[int, BaseException, float], None]] = None,
    budget_seconds: Optional[Callable[[], float]] = None,
) -> T:
    """Call ``fn`` retrying ``retry_on`` errors with backoff.

    ``budget_seconds`` returns the time still available; a retry whose delay
    would not fit re-raises the last error immediately.
    """
    total = attempts if attempts is not None else max_attempts()
    attempt = 1
    while True:
        try:
            return fn()
        except retry_on as exc:
            if attempt >= total:
                raise
            delay = compute_backoff_seconds(attempt)
            if budget_seconds is not None and delay >= budget_seconds():
                raise
            if on_retry is not None:
                on_retry(attempt, exc, delay)
            sleep(delay)
            attempt += 1


__all__ = ["compute_backoff_seconds", "max_attempts", "retry_call"]
