"""Background workers that verify queued submissions."""
from __future__ import annotations

import threading
import time
from typing import Any, Callable, Optional, Protocol, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ecopoints.config import QUEUE_SETTINGS, VERIFICATION_SETTINGS
from ecopoints.database import SessionLocal
from ecopoints.errors import JobTimeout
from ecopoints.jobs.queue import PriorityDelayQueue
from ecopoints.jobs.redis_queue import RedisQueue
from ecopoints.jobs.verification_job import VerificationJob
from ecopoints.models.db.submissions import Submission
from ecopoints.services import submission_ledger
from ecopoints.services.media import MediaProber
from ecopoints.services.verification_pipeline import (
    PROCESSING_FAILED_NOTE,
    RETRIES_EXHAUSTED_NOTE,
    fallback_to_review,
    run_verification,
)
from ecopoints.storage.base import MediaStorage
from ecopoints.utils import get_logger
from ecopoints.utils.backoff import compute_backoff_seconds, max_attempts
from ecopoints.utils.time import Deadline

logger = get_logger(__name__)


class QueueProtocol(Protocol):
    def enqueue(self, job: Any, *, priority: str = "normal", delay_seconds: float = 0.0) -> Any: ...
    def dequeue(self, *, block: bool = True, timeout: Optional[float] = None) -> Any: ...
    def try_claim(self, key: str, ttl_seconds: float) -> bool: ...
    def release(self, key: str) -> None: ...
    def shutdown(self) -> None: ...
    def snapshot(self) -> dict: ...


def enqueue_verification(
    queue: QueueProtocol,
    submission_id: int,
    *,
    correlation_id: Optional[str] = None,
    priority: str = "normal",
) -> VerificationJob:
    job = VerificationJob(submission_id=submission_id, priority=priority, correlation_id=correlation_id)
    queue.enqueue(job, priority=priority)
    logger.debug("Verification job enqueued", submission_id=submission_id, correlation_id=correlation_id)
    return job


class VerificationWorker:
    """Pool of daemon threads pulling ``VerificationJob`` s off the queue.

    A job is only processed while its submission claim is held; a job whose
    submission is claimed elsewhere goes back on the queue with a short delay.
    """

    def __init__(
        self,
        queue: QueueProtocol,
        storage: MediaStorage,
        prober: MediaProber,
        *,
        session_factory: Callable[[], Session] = SessionLocal,
        concurrency: Optional[int] = None,
        poll_timeout: float = 1.0,
    ):
        self.queue = queue
        self.storage = storage
        self.prober = prober
        self.session_factory = session_factory
        self.concurrency = concurrency or int(VERIFICATION_SETTINGS["worker_concurrency"])
        self.poll_timeout = poll_timeout
        self.job_timeout = float(VERIFICATION_SETTINGS["job_timeout_seconds"])
        self._threads: list[threading.Thread] = []
        self._stop_event = threading.Event()
        self._stats_lock = threading.Lock()
        self.stats = {"processed": 0, "retried": 0, "fallbacks": 0, "errors": 0}

    def _bump(self, counter: str) -> None:
        with self._stats_lock:
            self.stats[counter] += 1

    def start(self) -> None:
        if any(t.is_alive() for t in self._threads):  # pragma: no cover
            return
        self._stop_event.clear()
        self._threads = [
            threading.Thread(target=self._loop, name=f"verification-worker-{i}", daemon=True)
            for i in range(self.concurrency)
        ]
        for thread in self._threads:
            thread.start()
        logger.info("Verification workers started", concurrency=self.concurrency)

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        for thread in self._threads:
            thread.join(timeout=timeout)
        logger.info("Verification workers stopped")

    def is_running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                job = self.queue.dequeue(timeout=self.poll_timeout)
                if job is None:
                    continue
                if not isinstance(job, VerificationJob):
                    logger.warning("Skipping unknown job type", job_type=type(job).__name__)
                    continue
                self.handle(job)
            except Exception as e:  # pragma: no cover - keep the thread alive
                logger.error("Worker loop error", error=str(e), exc_info=True)
                time.sleep(1)

    def handle(self, job: VerificationJob) -> Optional[dict]:
        """Claim the job's submission and process it; re-enqueue if someone else holds it."""
        key = job.key()
        if not self.queue.try_claim(key, self.job_timeout + 30):
            delay = float(VERIFICATION_SETTINGS["claim_retry_delay_seconds"])
            logger.debug("Submission already claimed; re-enqueueing", submission_id=job.submission_id, delay_seconds=delay)
            self.queue.enqueue(job, priority=job.priority, delay_seconds=delay)
            return None
        try:
            return self.process(job)
        finally:
            self.queue.release(key)

    def process(self, job: VerificationJob) -> Optional[dict]:
        session = self.session_factory()
        try:
            result = run_verification(
                session,
                job.submission_id,
                storage=self.storage,
                prober=self.prober,
                deadline=Deadline(self.job_timeout),
            )
            self._bump("processed")
            logger.info(
                "Verification completed",
                submission_id=job.submission_id,
                status=result.get("status"),
                attempt=job.attempt,
                correlation_id=job.correlation_id,
            )
            return result
        except JobTimeout as e:
            session.rollback()
            if job.attempt < max_attempts():
                delay = compute_backoff_seconds(job.attempt)
                logger.warning(
                    "Verification attempt timed out; retrying",
                    submission_id=job.submission_id,
                    attempt=job.attempt,
                    delay_seconds=round(delay, 2),
                    error=e.message,
                )
                self.queue.enqueue(job.next_attempt(), priority=job.priority, delay_seconds=delay)
                self._bump("retried")
                return None
            return self._fallback(session, job, RETRIES_EXHAUSTED_NOTE, e)
        except Exception as e:
            session.rollback()
            logger.error("Verification job crashed", submission_id=job.submission_id, error=str(e), exc_info=True)
            self._bump("errors")
            if self._credit_outstanding(session, job):
                return self._retry_credit(job, e)
            return self._fallback(session, job, PROCESSING_FAILED_NOTE, e)
        finally:
            session.close()

    def _credit_outstanding(self, session: Session, job: VerificationJob) -> bool:
        try:
            submission = session.get(Submission, job.submission_id, populate_existing=True)
            return submission is not None and submission_ledger.awaiting_credit(session, submission)
        except SQLAlchemyError as e:
            # Database still unreachable; a retried job re-reads the state
            session.rollback()
            logger.warning("Could not inspect submission after crash", submission_id=job.submission_id, error=str(e))
            return True

    def _retry_credit(self, job: VerificationJob, error: Exception) -> None:
        """The transition committed but the credit did not; only the credit step is left."""
        if job.attempt >= max_attempts():
            # requeue_pending picks it up again at the next startup
            logger.error(
                "Credit for auto-verified submission still failing; giving up for now",
                submission_id=job.submission_id,
                attempt=job.attempt,
                error=str(error),
            )
            return None
        delay = compute_backoff_seconds(job.attempt)
        logger.warning(
            "Credit for auto-verified submission failed; retrying",
            submission_id=job.submission_id,
            attempt=job.attempt,
            delay_seconds=round(delay, 2),
            error=str(error),
        )
        self.queue.enqueue(job.next_attempt(), priority=job.priority, delay_seconds=delay)
        self._bump("retried")
        return None

    def _fallback(self, session: Session, job: VerificationJob, note: str, error: Exception) -> Optional[dict]:
        submission = session.get(Submission, job.submission_id, populate_existing=True)
        if submission is None:
            return None
        self._bump("fallbacks")
        return fallback_to_review(
            session, submission, note, attempt=job.attempt, error=str(error), error_type=type(error).__name__
        )

    def snapshot(self) -> dict:
        with self._stats_lock:
            stats = dict(self.stats)
        return {"running": self.is_running(), "concurrency": self.concurrency, **stats}


def create_queue() -> Union[PriorityDelayQueue, RedisQueue]:
    """Redis-backed queue when enabled and reachable, else the in-memory one."""
    if QUEUE_SETTINGS.get("use_redis", False):
        queue = RedisQueue()
        if queue.health_check():
            logger.info("Using Redis-backed verification queue")
            return queue
        logger.warning("Redis queue requested but unreachable; using in-memory queue")
    logger.info("Using in-memory verification queue")
    return PriorityDelayQueue()


__all__ = ["VerificationWorker", "QueueProtocol", "enqueue_verification", "create_queue"]
