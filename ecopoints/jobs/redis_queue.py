"""Redis-backed verification queue.

Redis layout:

* list ``ready_key``: serialized jobs that can run now. Normal and low
  priority jobs are appended (RPUSH); high priority jobs jump the line (LPUSH).
  Workers take from the head with BLPOP.
* sorted set ``scheduled_key``: delayed retries scored by their ready time.
* ``claim_prefix + <job key>``: per-submission claim taken with ``SET NX EX``.

A scheduled job is only pushed to the ready list by the process whose ZREM
removed it, so several app processes can promote concurrently without
duplicating work. When Redis cannot be reached every operation falls back to
an in-memory ``PriorityDelayQueue`` until the connection comes back.
"""
from __future__ import annotations

import json
import threading
import time
from typing import Any, Optional

import redis

from ecopoints.config import QUEUE_SETTINGS
from ecopoints.jobs.queue import PriorityDelayQueue, QueueItem
from ecopoints.jobs.verification_job import VerificationJob
from ecopoints.utils import get_logger

logger = get_logger(__name__)


class RedisQueue:
    def __init__(self, client: Optional[redis.Redis] = None) -> None:
        self._redis_url = str(QUEUE_SETTINGS.get("redis_url", "redis://localhost:6379/0"))
        self._ready_key = str(QUEUE_SETTINGS.get("redis_ready_key", "ecopoints:verification:ready"))
        self._scheduled_key = str(QUEUE_SETTINGS.get("redis_scheduled_key", "ecopoints:verification:scheduled"))
        self._claim_prefix = str(QUEUE_SETTINGS.get("redis_claim_prefix", "ecopoints:verification:claim:"))
        self._health_check_timeout = float(QUEUE_SETTINGS.get("redis_health_check_timeout", 2.0))  # type: ignore[arg-type]
        self._warn_depth = int(QUEUE_SETTINGS.get("warn_depth", 1000))  # type: ignore[arg-type]
        priorities = QUEUE_SETTINGS.get("priorities", {})  # type: ignore[assignment]
        self._priority_map: dict[str, int] = priorities if isinstance(priorities, dict) else {"normal": 5}
        self._high_priority = min(self._priority_map.values()) if self._priority_map else 0

        self._fallback_queue = PriorityDelayQueue()
        self._lock = threading.RLock()
        self._shutdown = False
        self._is_redis_active = False
        self._redis_client: Optional[redis.Redis] = client
        if client is None:
            self._connect()
        else:
            self.health_check()

    def _connect(self) -> None:
        try:
            self._redis_client = redis.from_url(
                self._redis_url,
                socket_connect_timeout=self._health_check_timeout,
                socket_timeout=None,
            )
            self._redis_client.ping()
            self._is_redis_active = True
            logger.info("Connected to Redis", url=self._redis_url)
        except (redis.RedisError, ConnectionError) as e:
            self._redis_client = None
            self._is_redis_active = False
            logger.warning("Redis unreachable; using in-memory fallback queue", url=self._redis_url, error=str(e))

    def health_check(self) -> bool:
        with self._lock:
            if self._redis_client is None:
                self._connect()
                return self._is_redis_active
            try:
                self._redis_client.ping()
            except (redis.RedisError, ConnectionError) as e:
                if self._is_redis_active:
                    logger.warning("Redis connection lost; using in-memory fallback queue", error=str(e))
                self._is_redis_active = False
                return False
            if not self._is_redis_active:
                logger.info("Redis connection restored")
            self._is_redis_active = True
            return True

    def _mark_down(self, operation: str, error: Exception) -> None:
        logger.error("Redis error", operation=operation, error=str(error))
        self._is_redis_active = False

    # --------------------------- serialization --------------------------- #
    @staticmethod
    def _serialize(item: QueueItem) -> str:
        job = item.job
        if not isinstance(job, VerificationJob):
            raise TypeError(f"Unsupported job type {type(job).__name__}")
        return json.dumps(
            {
                "job": job.to_dict(),
                "priority_label": item.priority_label,
                "priority_value": item.priority_value,
                "enqueued_at": item.enqueued_at,
                "ready_at": item.ready_at,
                "seq": item.seq,
            },
            sort_keys=True,
        )

    @staticmethod
    def _deserialize(raw: Any) -> Optional[QueueItem]:
        text = raw.decode("utf-8") if isinstance(raw, bytes) else str(raw)
        try:
            data = json.loads(text)
            return QueueItem(
                job=VerificationJob.from_dict(data["job"]),
                priority_label=data.get("priority_label", "normal"),
                priority_value=int(data.get("priority_value", 5)),
                enqueued_at=float(data.get("enqueued_at", time.time())),
                ready_at=float(data.get("ready_at", time.time())),
                seq=int(data.get("seq", 0)),
            )
        except (ValueError, KeyError, TypeError) as e:
            logger.error("Dropping undecodable queue entry", error=str(e), raw=text[:200])
            return None

    # -------------------------------- jobs -------------------------------- #
    def _promote_due(self) -> None:
        client = self._redis_client
        if client is None:
            return
        due = client.zrangebyscore(self._scheduled_key, 0, time.time())
        promoted = 0
        for raw in due or []:
            # Whoever removes the member owns the promotion
            if client.zrem(self._scheduled_key, raw):
                client.rpush(self._ready_key, raw)
                promoted += 1
        if promoted:
            logger.debug("Promoted scheduled jobs", count=promoted)

    def enqueue(self, job: Any, *, priority: str = "normal", delay_seconds: float = 0.0) -> QueueItem:
        with self._lock:
            if self._shutdown:
                raise RuntimeError("Queue shutdown")
            if priority not in self._priority_map:
                raise ValueError(f"Unknown priority '{priority}'")
            if not self.health_check() or self._redis_client is None:
                return self._fallback_queue.enqueue(job, priority=priority, delay_seconds=delay_seconds)

            now = time.time()
            item = QueueItem(
                job=job,
                priority_label=priority,
                priority_value=self._priority_map[priority],
                enqueued_at=now,
                ready_at=now + max(0.0, delay_seconds),
                seq=int(now * 1000),
            )
            payload = self._serialize(item)
            try:
                if item.ready_at > now:
                    self._redis_client.zadd(self._scheduled_key, {payload: item.ready_at})
                elif item.priority_value <= self._high_priority:
                    self._redis_client.lpush(self._ready_key, payload)
                else:
                    self._redis_client.rpush(self._ready_key, payload)
            except redis.RedisError as e:
                self._mark_down("enqueue", e)
                return self._fallback_queue.enqueue(job, priority=priority, delay_seconds=delay_seconds)

            depth = self.depth()
            if depth >= self._warn_depth:
                logger.warning("Queue depth warning", depth=depth)
            return item

    def dequeue(self, *, block: bool = True, timeout: Optional[float] = None) -> Any:
        end_time = None if timeout is None else time.time() + timeout
        while True:
            if self._shutdown:
                return None
            if not self.health_check() or self._redis_client is None:
                remaining = None if end_time is None else max(0.0, end_time - time.time())
                return self._fallback_queue.dequeue(block=block, timeout=remaining)
            # Jobs parked locally during an outage go first once Redis is back
            if self._fallback_queue.depth():
                job = self._fallback_queue.dequeue(block=False)
                if job is not None:
                    return job
            try:
                self._promote_due()
                if not block:
                    raw = self._redis_client.lpop(self._ready_key)
                else:
                    remaining = None if end_time is None else end_time - time.time()
                    if remaining is not None and remaining <= 0:
                        return None
                    # One-second polls so due retries keep getting promoted
                    result = self._redis_client.blpop([self._ready_key], timeout=1)
                    raw = result[1] if result else None
            except redis.RedisError as e:
                self._mark_down("dequeue", e)
                continue

            if raw is not None:
                item = self._deserialize(raw)
                if item is not None:
                    return item.job
                continue
            if not block:
                return None

    # ------------------------------- claims ------------------------------- #
    def try_claim(self, key: str, ttl_seconds: float) -> bool:
        if not self.health_check() or self._redis_client is None:
            return self._fallback_queue.try_claim(key, ttl_seconds)
        try:
            return bool(
                self._redis_client.set(f"{self._claim_prefix}{key}", "1", nx=True, ex=max(1, int(ttl_seconds)))
            )
        except redis.RedisError as e:
            self._mark_down("try_claim", e)
            return self._fallback_queue.try_claim(key, ttl_seconds)

    def release(self, key: str) -> None:
        self._fallback_queue.release(key)
        if self._redis_client is None or not self._is_redis_active:
            return
        try:
            self._redis_client.delete(f"{self._claim_prefix}{key}")
        except redis.RedisError as e:
            self._mark_down("release", e)

    # ------------------------------ lifecycle ------------------------------ #
    def shutdown(self) -> None:
        with self._lock:
            self._shutdown = True
            self._fallback_queue.shutdown()

    def purge(self) -> None:
        """Drop every queued job (test isolation)."""
        with self._lock:
            self._fallback_queue.purge()
            if not self.health_check() or self._redis_client is None:
                return
            try:
                self._redis_client.delete(self._ready_key, self._scheduled_key)
            except redis.RedisError as e:
                self._mark_down("purge", e)

    @staticmethod
    def _as_int(value: Any) -> int:
        if value is None:
            return 0
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        try:
            return int(value)
        except (TypeError, ValueError):
            return 0

    def _counts(self) -> tuple[int, int]:
        assert self._redis_client is not None
        return (
            self._as_int(self._redis_client.llen(self._ready_key)),
            self._as_int(self._redis_client.zcard(self._scheduled_key)),
        )

    def depth(self) -> int:
        if not self._is_redis_active or self._redis_client is None:
            return self._fallback_queue.depth()
        try:
            ready, scheduled = self._counts()
        except redis.RedisError as e:
            self._mark_down("depth", e)
            return self._fallback_queue.depth()
        return ready + scheduled + self._fallback_queue.depth()

    def __len__(self) -> int:
        return self.depth()

    def snapshot(self) -> dict:
        with self._lock:
            if self.health_check() and self._redis_client is not None:
                try:
                    ready, scheduled = self._counts()
                    return {
                        "backend": "redis",
                        "depth": ready + scheduled,
                        "ready": ready,
                        "scheduled": scheduled,
                        "shutdown": self._shutdown,
                        "redis_active": True,
                        "fallback_depth": self._fallback_queue.depth(),
                    }
                except redis.RedisError as e:
                    self._mark_down("snapshot", e)
            snapshot = self._fallback_queue.snapshot()
            snapshot["redis_active"] = False
            return snapshot


__all__ = ["RedisQueue"]
