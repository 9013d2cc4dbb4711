"""In-memory circuit breaker keyed by payout gateway (process-local)."""
from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict

from ecopoints.config import CIRCUIT_BREAKER
from ecopoints.utils.time import utc_now


@dataclass
class BreakerState:
    failures: int = 0
    state: str = "CLOSED"
    opened_at: datetime | None = None
    half_open_probes: int = 0


class CircuitBreaker:
    def __init__(self):
        self._states: Dict[str, BreakerState] = {}
        self._lock = threading.Lock()

    def _get(self, key: str) -> BreakerState:
        return self._states.setdefault(key, BreakerState())

    def allow_call(self, key: str) -> tuple[bool, str | None]:
        with self._lock:
            st = self._get(key)
            if st.state == "CLOSED":
                return True, None
            if st.state == "OPEN":
                cooldown = CIRCUIT_BREAKER["open_cooldown_seconds"]
                if st.opened_at and utc_now() - st.opened_at >= timedelta(seconds=cooldown):
                    st.state = "HALF_OPEN"
                    st.half_open_probes = 0
                else:
                    return False, "circuit_open"
            probe_limit = int(CIRCUIT_BREAKER["half_open_probe_count"])
            if st.half_open_probes >= probe_limit:
                return False, "half_open_probe_exhausted"
            st.half_open_probes += 1
            return True, None

    def record_success(self, key: str) -> None:
        with self._lock:
            st = self._get(key)
            st.failures = 0
            if st.state in {"OPEN", "HALF_OPEN"}:
                st.state = "CLOSED"
                st.opened_at = None
                st.half_open_probes = 0

    def record_failure(self, key: str) -> None:
        with self._lock:
            st = self._get(key)
            st.failures += 1
            threshold = int(CIRCUIT_BREAKER["failure_threshold"])
            if st.state == "CLOSED" and st.failures >= threshold:
                st.state = "OPEN"
                st.opened_at = utc_now()
            elif st.state == "HALF_OPEN":
                st.state = "OPEN"
                st.opened_at = utc_now()

    def reset(self) -> None:
        with self._lock:
            self._states.clear()

    def snapshot(self) -> dict[str, dict[str, object]]:
        with self._lock:
            return {
                k: {
                    "failures": v.failures,
                    "state": v.state,
                    "opened_at": v.opened_at.isoformat() if v.opened_at else None,
                    "half_open_probes": v.half_open_probes,
                }
                for k, v in self._states.items()
            }


GATEWAY_CIRCUIT_BREAKER = CircuitBreaker()

__all__ = ["CircuitBreaker", "GATEWAY_CIRCUIT_BREAKER"]
