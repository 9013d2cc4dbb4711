"""Tests for the Redis-backed queue against a mocked Redis client.

The mock keeps a ready list, a scheduled sorted set and claim keys in plain
Python structures and only implements the commands ``RedisQueue`` issues.
"""
import time
from unittest.mock import MagicMock, patch

import pytest
import redis

from ecopoints.config import QUEUE_SETTINGS
from ecopoints.jobs.queue import PriorityDelayQueue
from ecopoints.jobs.redis_queue import RedisQueue
from ecopoints.jobs.verification_job import VerificationJob
from ecopoints.jobs.worker_verification import create_queue


@pytest.fixture
def mock_redis():
    client = MagicMock()
    client.ping.return_value = True

    ready: list = []
    scheduled: dict = {}
    keys: dict = {}

    def rpush(key, value):
        ready.append(value)
        return len(ready)

    def lpush(key, value):
        ready.insert(0, value)
        return len(ready)

    def lpop(key):
        return ready.pop(0) if ready else None

    def blpop(key_list, timeout=0):
        if ready:
            return [key_list[0], ready.pop(0)]
        return None

    def zadd(key, mapping):
        scheduled.update(mapping)
        return len(mapping)

    def zrangebyscore(key, low, high):
        return [member for member, score in sorted(scheduled.items(), key=lambda kv: kv[1]) if low <= score <= high]

    def zrem(key, member):
        return 1 if scheduled.pop(member, None) is not None else 0

    def set_(key, value, nx=False, ex=None):
        if nx and key in keys:
            return None
        keys[key] = value
        return True

    def delete(*names):
        removed = 0
        for name in names:
            if name in keys:
                keys.pop(name)
                removed += 1
        if QUEUE_SETTINGS["redis_ready_key"] in names:
            ready.clear()
        if QUEUE_SETTINGS["redis_scheduled_key"] in names:
            scheduled.clear()
        return removed

    client.rpush.side_effect = rpush
    client.lpush.side_effect = lpush
    client.lpop.side_effect = lpop
    client.blpop.side_effect = blpop
    client.zadd.side_effect = zadd
    client.zrangebyscore.side_effect = zrangebyscore
    client.zrem.side_effect = zrem
    client.set.side_effect = set_
    client.delete.side_effect = delete
    client.llen.side_effect = lambda key: len(ready)
    client.zcard.side_effect = lambda key: len(scheduled)

    client._ready = ready
    client._scheduled = scheduled
    return client


def test_enqueue_dequeue_round_trip(mock_redis):
    queue = RedisQueue(client=mock_redis)
    queue.enqueue(VerificationJob(submission_id=1, correlation_id="req-1"))
    snap = queue.snapshot()
    assert snap["backend"] == "redis" and snap["redis_active"] is True
    assert snap["ready"] == 1

    job = queue.dequeue(block=False)
    assert isinstance(job, VerificationJob)
    assert job.submission_id == 1 and job.correlation_id == "req-1"
    assert queue.dequeue(block=False) is None


def test_high_priority_jumps_the_line(mock_redis):
    queue = RedisQueue(client=mock_redis)
    queue.enqueue(VerificationJob(submission_id=1))
    queue.enqueue(VerificationJob(submission_id=2))
    queue.enqueue(VerificationJob(submission_id=3, priority="high"), priority="high")
    order = [queue.dequeue(block=False).submission_id for _ in range(3)]
    assert order == [3, 1, 2]


def test_delayed_job_is_promoted_when_due(mock_redis):
    queue = RedisQueue(client=mock_redis)
    queue.enqueue(VerificationJob(submission_id=7, attempt=2), delay_seconds=30)
    assert queue.snapshot()["scheduled"] == 1
    assert queue.dequeue(block=False) is None

    # Pretend the delay elapsed
    for member in list(mock_redis._scheduled):
        mock_redis._scheduled[member] = time.time() - 1
    job = queue.dequeue(block=False)
    assert job.submission_id == 7 and job.attempt == 2
    assert queue.depth() == 0


def test_blocking_dequeue_times_out(mock_redis):
    queue = RedisQueue(client=mock_redis)
    started = time.time()
    assert queue.dequeue(timeout=0.2) is None
    assert time.time() - started < 5


def test_claims_use_set_nx(mock_redis):
    queue = RedisQueue(client=mock_redis)
    assert queue.try_claim("verify:1", ttl_seconds=30) is True
    assert queue.try_claim("verify:1", ttl_seconds=30) is False
    queue.release("verify:1")
    assert queue.try_claim("verify:1", ttl_seconds=30) is True
    _, kwargs = mock_redis.set.call_args
    assert kwargs["nx"] is True and kwargs["ex"] == 30


def test_undecodable_entries_are_dropped(mock_redis):
    queue = RedisQueue(client=mock_redis)
    mock_redis._ready.append(b"{not json")
    queue.enqueue(VerificationJob(submission_id=4))
    assert queue.dequeue(block=False).submission_id == 4


def test_falls_back_to_memory_when_redis_errors(mock_redis):
    queue = RedisQueue(client=mock_redis)
    mock_redis.rpush.side_effect = redis.ConnectionError("connection reset")
    queue.enqueue(VerificationJob(submission_id=5))

    assert queue.snapshot()["fallback_depth"] == 1
    # Redis answers again; the locally parked job is served first
    assert queue.dequeue(block=False).submission_id == 5


def test_unreachable_redis_uses_fallback_queue(mock_redis):
    mock_redis.ping.side_effect = redis.ConnectionError("refused")
    queue = RedisQueue(client=mock_redis)
    queue.enqueue(VerificationJob(submission_id=6))
    snap = queue.snapshot()
    assert snap["redis_active"] is False
    assert snap["backend"] == "memory"
    assert queue.dequeue(block=False).submission_id == 6


def test_purge_and_shutdown(mock_redis):
    queue = RedisQueue(client=mock_redis)
    queue.enqueue(VerificationJob(submission_id=1))
    queue.enqueue(VerificationJob(submission_id=2), delay_seconds=60)
    queue.purge()
    assert queue.depth() == 0
    queue.shutdown()
    assert queue.dequeue(block=False) is None
    with pytest.raises(RuntimeError):
        queue.enqueue(VerificationJob(submission_id=3))


def test_create_queue_prefers_redis_when_reachable(mock_redis, monkeypatch):
    monkeypatch.setitem(QUEUE_SETTINGS, "use_redis", True)
    with patch("redis.from_url", return_value=mock_redis):
        queue = create_queue()
    assert isinstance(queue, RedisQueue)


def test_create_queue_falls_back_when_redis_down(monkeypatch):
    monkeypatch.setitem(QUEUE_SETTINGS, "use_redis", True)
    with patch("redis.from_url", side_effect=redis.ConnectionError("refused")):
        queue = create_queue()
    assert isinstance(queue, PriorityDelayQueue)
