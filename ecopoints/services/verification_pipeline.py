"""Verification pipeline for a single queued submission.

Single public entry point ``run_verification(session, submission_id, ...)``:

1. Fetch the uploaded video from storage.
2. Probe duration / size / resolution / codec.
3. Grab a representative frame, fingerprint it, build a thumbnail.
4. Store the thumbnail; look for near-duplicate fingerprints.
5. Score the media.
6. Commit the transition (auto_verified above the threshold, else
   needs_review) together with the probed metadata and its event.
7. Credit the wallet for auto_verified submissions (second commit).

Nothing is committed before step 6, so an attempt that times out or dies
half-way leaves the submission ``queued`` for the next attempt. Re-running on
a submission that already left ``queued`` is a no-op, except that an
``auto_verified`` submission still missing its credit gets step 7 only.

Transient storage errors are retried in-step with backoff; once the budget
is spent, or on a non-transient failure, the submission goes to
``needs_review`` with a system note. ``JobTimeout`` propagates so the worker
can re-enqueue the attempt.
"""
from __future__ import annotations

import time
from typing import Any, Callable, Dict, Optional, TypeVar

from sqlalchemy.orm import Session

from ecopoints.config import VERIFICATION_SETTINGS
from ecopoints.errors import (
    InvalidStateTransition,
    JobTimeout,
    MediaNotFound,
    MediaProbeError,
    StorageUnavailable,
)
from ecopoints.models.db.enums import SubmissionStatus
from ecopoints.models.db.submissions import Submission
from ecopoints.services import submission_ledger
from ecopoints.services.media import (
    MediaProber,
    frame_offset,
    hamming_distance,
    make_thumbnail,
    perceptual_fingerprint,
)
from ecopoints.services.scoring import compute_auto_score, is_auto_verifiable
from ecopoints.storage.base import MediaStorage
from ecopoints.utils import get_logger, log_performance
from ecopoints.utils.backoff import retry_call
from ecopoints.utils.time import Deadline

logger = get_logger(__name__)

T = TypeVar("T")

PROCESSING_FAILED_NOTE = "Video processing failed - manual review required"
RETRIES_EXHAUSTED_NOTE = "Verification retries exhausted - manual review required"


def _check(deadline: Deadline, step: str) -> None:
    if deadline.expired():
        raise JobTimeout(f"Verification deadline exceeded before '{step}'", step=step)


def _step(name: str, fn: Callable[[], T], deadline: Deadline, submission_id: int, sleep: Callable[[float], None]) -> T:
    _check(deadline, name)

    def _on_retry(attempt: int, exc: BaseException, delay: float) -> None:
        logger.warning(
            "Transient failure in verification step; retrying",
            step=name,
            submission_id=submission_id,
            attempt=attempt,
            delay_seconds=round(delay, 2),
            error=str(exc),
        )

    return retry_call(
        fn,
        retry_on=(StorageUnavailable,),
        sleep=sleep,
        on_retry=_on_retry,
        budget_seconds=deadline.remaining,
    )


def fallback_to_review(session: Session, submission: Submission, note: str, **meta: Any) -> Dict[str, Any]:
    """Park a queued submission in needs_review with a system note."""
    try:
        submission_ledger.transition(
            session,
            submission,
            SubmissionStatus.NEEDS_REVIEW,
            meta={"note": note, **meta},
            values={"review_note": note},
        )
        session.commit()
    except InvalidStateTransition as e:
        logger.info("Submission changed state before fallback; leaving as is", submission_id=submission.id, error=e.message)
        return {"submission_id": submission.id, "status": e.context.get("current"), "skipped": True}
    logger.warning("Submission routed to manual review", submission_id=submission.id, note=note)
    return {"submission_id": submission.id, "status": SubmissionStatus.NEEDS_REVIEW.value, "note": note}


def _find_duplicate(session: Session, submission: Submission, fingerprint: str) -> Optional[int]:
    threshold = int(VERIFICATION_SETTINGS["duplicate_hamming_threshold"])
    candidates = (
        session.query(Submission.id, Submission.fingerprint)
        .filter(
            Submission.id != submission.id,
            Submission.fingerprint.isnot(None),
            Submission.status != SubmissionStatus.REJECTED,
        )
        .order_by(Submission.id.desc())
        .limit(int(VERIFICATION_SETTINGS["duplicate_scan_limit"]))
        .all()
    )
    for other_id, other_fp in candidates:
        if hamming_distance(fingerprint, other_fp) <= threshold:
            return other_id
    return None


def run_verification(
    session: Session,
    submission_id: int,
    *,
    storage: MediaStorage,
    prober: MediaProber,
    deadline: Optional[Deadline] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, Any]:
    """Run (or resume) verification for one submission and return a summary dict."""
    started = time.perf_counter()
    deadline = deadline or Deadline(float(VERIFICATION_SETTINGS["job_timeout_seconds"]))

    submission = session.get(Submission, submission_id, populate_existing=True)
    if submission is None:
        logger.warning("Verification skipped: submission no longer exists", submission_id=submission_id)
        return {"submission_id": submission_id, "status": None, "skipped": True}

    if submission.status != SubmissionStatus.QUEUED:
        if submission_ledger.awaiting_credit(session, submission):
            points = submission_ledger.credit_submission(session, submission)
            logger.info("Resumed credit for auto-verified submission", submission_id=submission_id, points=points)
            return {"submission_id": submission_id, "status": submission.status.value, "points_credited": points, "resumed": True}
        return {"submission_id": submission_id, "status": submission.status.value, "skipped": True}

    # Steps 1-2: media must be readable, otherwise a human decides
    try:
        data = _step("fetch", lambda: storage.fetch(submission.media_key), deadline, submission_id, sleep)
        _check(deadline, "probe")
        metadata = prober.probe(data, timeout=deadline.remaining())
    except (MediaNotFound, MediaProbeError) as e:
        return fallback_to_review(session, submission, PROCESSING_FAILED_NOTE, error_code=e.error_code, error=e.message)
    except StorageUnavailable as e:
        return fallback_to_review(session, submission, RETRIES_EXHAUSTED_NOTE, error_code=e.error_code, error=e.message)

    # Steps 3-4: thumbnail and fingerprint are auxiliary; failures are logged only
    thumbnail_key: Optional[str] = None
    fingerprint: Optional[str] = None
    try:
        _check(deadline, "extract_frame")
        frame = prober.extract_frame(data, frame_offset(metadata.duration_s), timeout=deadline.remaining())
        fingerprint = perceptual_fingerprint(frame)
        thumbnail = make_thumbnail(frame)
        thumbnail_key = _step(
            "store_thumbnail",
            lambda: storage.store(thumbnail, prefix="thumbnails", extension=".jpg"),
            deadline,
            submission_id,
            sleep,
        )
    except (MediaProbeError, StorageUnavailable) as e:
        logger.warning("Thumbnail step failed; continuing without it", submission_id=submission_id, error=str(e))

    duplicate_of = _find_duplicate(session, submission, fingerprint) if fingerprint else None

    # Steps 5-6
    score = compute_auto_score(metadata)
    target = SubmissionStatus.AUTO_VERIFIED if is_auto_verifiable(score) else SubmissionStatus.NEEDS_REVIEW
    note = None
    if duplicate_of is not None:
        target = SubmissionStatus.NEEDS_REVIEW
        note = f"Possible duplicate of submission {duplicate_of}"

    try:
        _check(deadline, "transition")
    except JobTimeout:
        if thumbnail_key:
            storage.delete(thumbnail_key)
        raise

    values = {
        "auto_score": score,
        "duration_s": metadata.rounded_duration,
        "size_bytes": metadata.size_bytes,
        "width": metadata.width,
        "height": metadata.height,
        "codec": metadata.codec,
        "fingerprint": fingerprint,
        "thumbnail_key": thumbnail_key,
        "review_note": note,
    }
    try:
        submission_ledger.transition(
            session,
            submission,
            target,
            meta={"auto_score": score, "duplicate_of": duplicate_of},
            values=values,
        )
        session.commit()
    except InvalidStateTransition as e:
        # Deleted or moderated while we were working
        if thumbnail_key:
            storage.delete(thumbnail_key)
        logger.info("Verification result discarded", submission_id=submission_id, error=e.message)
        return {"submission_id": submission_id, "status": e.context.get("current"), "skipped": True}

    # Step 7
    points = 0
    if target == SubmissionStatus.AUTO_VERIFIED:
        points = submission_ledger.credit_submission(session, submission)

    log_performance(
        "verification_pipeline",
        (time.perf_counter() - started) * 1000,
        {"submission_id": submission_id, "status": target.value, "auto_score": score},
    )
    return {
        "submission_id": submission_id,
        "status": target.value,
        "auto_score": score,
        "points_credited": points,
        "thumbnail_key": thumbnail_key,
        "fingerprint": fingerprint,
        "duplicate_of": duplicate_of,
    }


__all__ = ["run_verification", "fallback_to_review", "PROCESSING_FAILED_NOTE", "RETRIES_EXHAUSTED_NOTE"]
