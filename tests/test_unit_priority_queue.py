import threading
import time

import pytest

from ecopoints.jobs.queue import PriorityDelayQueue
from ecopoints.jobs.verification_job import VerificationJob


def test_priority_queue_ordering():
    q = PriorityDelayQueue()
    job_low = VerificationJob(submission_id=1, priority="low")
    job_high = VerificationJob(submission_id=2, priority="high")
    job_normal = VerificationJob(submission_id=3, priority="normal")
    q.enqueue(job_low, priority="low")
    q.enqueue(job_high, priority="high")
    q.enqueue(job_normal, priority="normal")
    snap = q.snapshot()
    assert snap.get("ready") == 3
    assert snap.get("depth") == 3
    order = [q.dequeue(block=False).submission_id for _ in range(3)]
    assert order == [2, 3, 1]
    assert q.dequeue(block=False) is None


def test_fifo_within_priority():
    q = PriorityDelayQueue()
    for sid in (10, 11, 12):
        q.enqueue(VerificationJob(submission_id=sid))
    assert [q.dequeue(block=False).submission_id for _ in range(3)] == [10, 11, 12]


def test_delayed_job_waits_and_does_not_hide_ready_work():
    q = PriorityDelayQueue()
    q.enqueue(VerificationJob(submission_id=1, priority="high"), priority="high", delay_seconds=0.2)
    q.enqueue(VerificationJob(submission_id=2, priority="low"), priority="low")
    assert q.snapshot()["scheduled"] == 1
    assert q.dequeue(block=False).submission_id == 2
    assert q.dequeue(block=False) is None
    job = q.dequeue(timeout=2)
    assert job is not None and job.submission_id == 1


def test_blocking_dequeue_wakes_on_enqueue():
    q = PriorityDelayQueue()
    got = []

    def consumer():
        got.append(q.dequeue(timeout=2))

    t = threading.Thread(target=consumer)
    t.start()
    time.sleep(0.1)
    q.enqueue(VerificationJob(submission_id=5))
    t.join(timeout=3)
    assert got and got[0].submission_id == 5


def test_claims_are_exclusive_until_released_or_expired():
    q = PriorityDelayQueue()
    assert q.try_claim("verify:1", ttl_seconds=30) is True
    assert q.try_claim("verify:1", ttl_seconds=30) is False
    assert q.try_claim("verify:2", ttl_seconds=30) is True
    q.release("verify:1")
    assert q.try_claim("verify:1", ttl_seconds=0.05) is True
    time.sleep(0.1)
    assert q.try_claim("verify:1", ttl_seconds=30) is True


def test_unknown_priority_and_shutdown():
    q = PriorityDelayQueue()
    with pytest.raises(ValueError):
        q.enqueue(VerificationJob(submission_id=1), priority="urgent")
    q.shutdown()
    assert q.health_check() is False
    with pytest.raises(RuntimeError):
        q.enqueue(VerificationJob(submission_id=1))
    assert q.dequeue(timeout=0.1) is None


def test_purge_clears_jobs_and_claims():
    q = PriorityDelayQueue()
    q.enqueue(VerificationJob(submission_id=1))
    q.enqueue(VerificationJob(submission_id=2), delay_seconds=60)
    q.try_claim("verify:1", ttl_seconds=30)
    q.purge()
    snap = q.snapshot()
    assert snap["depth"] == 0 and snap["claims"] == 0


def test_job_helpers():
    job = VerificationJob(submission_id=9, correlation_id="req-1")
    assert job.key() == "verify:9"
    retry = job.next_attempt()
    assert retry.attempt == 2 and retry.correlation_id == "req-1"
    assert VerificationJob.from_dict(retry.to_dict()) == retry
