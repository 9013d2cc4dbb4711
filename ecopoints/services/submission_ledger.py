"""Submission ledger: creation, moderation and the submission state machine.

Transitions::

    queued        -> auto_verified | needs_review | rejected
    auto_verified -> approved | rejected
    needs_review  -> approved | rejected
    approved, rejected: terminal

Each transition is a compare-and-set ``UPDATE ... WHERE status = :current``
committed together with its audit event. Two moderators racing on the same
submission therefore cannot both win; the loser gets InvalidStateTransition
and nothing it did is persisted.
"""
from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ecopoints.config import SUBMISSION_SETTINGS
from ecopoints.errors import (
    InvalidStateTransition,
    LocationOutOfRange,
    NotFound,
    PermissionDenied,
    RateLimitExceeded,
    StaleOrFutureCapture,
    StorageUnavailable,
    ValidationFailed,
)
from ecopoints.models.db.enums import SubmissionEventType, SubmissionStatus
from ecopoints.models.db.submissions import Submission, SubmissionEvent
from ecopoints.services import event_log, wallet_ledger
from ecopoints.services.geo_matcher import find_nearest_active_point
from ecopoints.services.scoring import points_for_score
from ecopoints.utils import get_logger, log_business_event
from ecopoints.utils.time import ensure_utc, start_of_utc_day, utc_now

logger = get_logger(__name__)

ALLOWED_TRANSITIONS: Dict[SubmissionStatus, frozenset[SubmissionStatus]] = {
    SubmissionStatus.QUEUED: frozenset({
        SubmissionStatus.AUTO_VERIFIED,
        SubmissionStatus.NEEDS_REVIEW,
        SubmissionStatus.REJECTED,
    }),
    SubmissionStatus.AUTO_VERIFIED: frozenset({SubmissionStatus.APPROVED, SubmissionStatus.REJECTED}),
    SubmissionStatus.NEEDS_REVIEW: frozenset({SubmissionStatus.APPROVED, SubmissionStatus.REJECTED}),
    SubmissionStatus.APPROVED: frozenset(),
    SubmissionStatus.REJECTED: frozenset(),
}

MODERATABLE_STATUSES = (SubmissionStatus.AUTO_VERIFIED, SubmissionStatus.NEEDS_REVIEW)
DELETABLE_STATUSES = (SubmissionStatus.QUEUED, SubmissionStatus.NEEDS_REVIEW)
MODERATION_QUEUE_STATUSES = (SubmissionStatus.NEEDS_REVIEW, SubmissionStatus.QUEUED)

_EVENT_FOR_STATUS = {
    SubmissionStatus.AUTO_VERIFIED: SubmissionEventType.AUTO_VERIFIED,
    SubmissionStatus.NEEDS_REVIEW: SubmissionEventType.NEEDS_REVIEW,
    SubmissionStatus.APPROVED: SubmissionEventType.APPROVED,
    SubmissionStatus.REJECTED: SubmissionEventType.REJECTED,
}


def can_transition(current: SubmissionStatus, target: SubmissionStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def _load(session: Session, submission_id: int) -> Submission:
    submission = (
        session.query(Submission)
        .filter(Submission.id == submission_id)
        .execution_options(populate_existing=True)
        .one_or_none()
    )
    if submission is None:
        raise NotFound(f"Submission {submission_id} not found", submission_id=submission_id)
    return submission


def transition(
    session: Session,
    submission: Submission,
    target: SubmissionStatus,
    *,
    actor_id: Optional[int] = None,
    meta: Optional[Dict[str, Any]] = None,
    values: Optional[Dict[str, Any]] = None,
) -> Submission:
    """Move ``submission`` to ``target`` inside the caller's unit of work (no commit).

    ``values`` are extra column updates applied in the same guarded statement.
    """
    current = submission.status
    if not can_transition(current, target):
        raise InvalidStateTransition("Submission", submission.id, current.value, target.value)

    session.flush()
    stmt = (
        update(Submission)
        .where(Submission.id == submission.id, Submission.status == current)
        .values(status=target, **(values or {}))
        .execution_options(synchronize_session=False)
    )
    if session.execute(stmt).rowcount != 1:
        session.rollback()
        latest = session.get(Submission, submission.id, populate_existing=True)
        raise InvalidStateTransition(
            "Submission", submission.id, latest.status.value if latest else None, target.value
        )
    event_log.append_event(session, submission.id, _EVENT_FOR_STATUS[target], actor_id=actor_id, meta=meta)
    session.flush()
    session.refresh(submission)
    return submission


def _apply_credit(session: Session, submission: Submission, *, actor_id: Optional[int] = None) -> int:
    """Add the award and its ``points_credited`` event to the unit of work; 0 if already credited.

    A concurrent credit of the same submission trips the single-credit unique
    index on flush (IntegrityError).
    """
    if event_log.has_event(session, submission.id, SubmissionEventType.POINTS_CREDITED):
        return 0
    points = points_for_score(submission.auto_score)
    wallet_ledger.credit_award(session, submission.user_id, points)
    event_log.append_event(
        session,
        submission.id,
        SubmissionEventType.POINTS_CREDITED,
        actor_id=actor_id,
        meta={"points": points, "auto_score": submission.auto_score},
    )
    session.flush()
    return points


def _log_credit(submission: Submission, points: int) -> None:
    if points:
        log_business_event(
            event_type="points_credited",
            details={"submission_id": submission.id, "points": points, "auto_score": submission.auto_score},
            user_id=submission.user_id,
        )


def awaiting_credit(session: Session, submission: Submission) -> bool:
    """True for an auto_verified submission whose credit has not been committed yet."""
    return submission.status == SubmissionStatus.AUTO_VERIFIED and not event_log.has_event(
        session, submission.id, SubmissionEventType.POINTS_CREDITED
    )


def credit_submission(session: Session, submission: Submission, *, actor_id: Optional[int] = None) -> int:
    """Credit the owner's wallet for ``submission`` once and commit; returns the points credited."""
    try:
        points = _apply_credit(session, submission, actor_id=actor_id)
        session.commit()
    except IntegrityError:
        session.rollback()
        logger.info("Submission already credited", submission_id=submission.id)
        return 0
    _log_credit(submission, points)
    return points


# ------------------------------- Operations -------------------------------- #

def create_submission(
    session: Session,
    *,
    user_id: int,
    media_key: str,
    latitude: float,
    longitude: float,
    recorded_at: datetime,
    device_fingerprint: Optional[str] = None,
    title: Optional[str] = None,
    description: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Submission:
    """Validate and persist a new ``queued`` submission.

    The caller enqueues the verification job after this returns; the row is
    already committed so a lost enqueue is recovered by ``requeue_pending``.
    """
    now = ensure_utc(now or utc_now())

    point = find_nearest_active_point(session, latitude, longitude)
    if point is None:
        raise LocationOutOfRange(
            "Location is not within range of any active collection point",
            latitude=latitude,
            longitude=longitude,
        )

    recorded_at = ensure_utc(recorded_at)
    window = timedelta(hours=int(SUBMISSION_SETTINGS["capture_window_hours"]))
    if recorded_at > now or recorded_at < now - window:
        raise StaleOrFutureCapture(
            "Video must be recorded within the last 24 hours",
            recorded_at=recorded_at.isoformat(),
        )

    daily_limit = int(SUBMISSION_SETTINGS["daily_limit"])
    created_today = (
        session.query(Submission)
        .filter(Submission.user_id == user_id, Submission.created_at >= start_of_utc_day(now))
        .count()
    )
    if created_today >= daily_limit:
        raise RateLimitExceeded(
            f"Daily submission limit of {daily_limit} reached",
            user_id=user_id,
            limit=daily_limit,
        )

    submission = Submission(
        user_id=user_id,
        collection_point_id=point.id,
        media_key=media_key,
        latitude=latitude,
        longitude=longitude,
        recorded_at=recorded_at,
        device_fingerprint=device_fingerprint,
        title=title,
        description=description,
        status=SubmissionStatus.QUEUED,
        created_at=now,
    )
    session.add(submission)
    session.flush()
    event_log.append_event(
        session,
        submission.id,
        SubmissionEventType.CREATED,
        actor_id=user_id,
        meta={"collection_point_id": point.id},
    )
    session.commit()
    session.refresh(submission)

    log_business_event(
        event_type="submission_created",
        details={"submission_id": submission.id, "collection_point_id": point.id},
        user_id=user_id,
    )
    return submission


def approve(
    session: Session,
    submission_id: int,
    actor_id: int,
    reason: Optional[str] = None,
) -> Dict[str, Any]:
    """Approve a submission awaiting moderation and credit the owner (at most once).

    The approval, its event and the credit commit together. If the worker
    credited the same submission concurrently, the unit is retried once and
    then approves without a second credit.
    """
    for attempt in (1, 2):
        submission = _load(session, submission_id)
        if submission.status not in MODERATABLE_STATUSES:
            raise InvalidStateTransition(
                "Submission", submission_id, submission.status.value, SubmissionStatus.APPROVED.value
            )
        try:
            transition(
                session,
                submission,
                SubmissionStatus.APPROVED,
                actor_id=actor_id,
                meta={"reason": reason} if reason else None,
            )
            points = _apply_credit(session, submission, actor_id=actor_id)
            session.commit()
            break
        except IntegrityError:
            session.rollback()
            if attempt == 2:
                raise
            logger.info("Concurrent credit detected during approval; retrying", submission_id=submission_id)

    _log_credit(submission, points)
    log_business_event(
        event_type="submission_approved",
        details={"submission_id": submission_id, "points_credited": points},
        user_id=actor_id,
    )
    return {"submission_id": submission_id, "status": SubmissionStatus.APPROVED.value, "points_credited": points}


def reject(session: Session, submission_id: int, actor_id: Optional[int], reason: str) -> Submission:
    if not reason or not reason.strip():
        raise ValidationFailed("A rejection reason is required", submission_id=submission_id)
    submission = _load(session, submission_id)
    already_credited = event_log.has_event(session, submission_id, SubmissionEventType.POINTS_CREDITED)
    transition(
        session,
        submission,
        SubmissionStatus.REJECTED,
        actor_id=actor_id,
        meta={"reason": reason.strip(), "credited_points_retained": already_credited},
        values={"rejection_reason": reason.strip()},
    )
    session.commit()
    if already_credited:
        logger.warning("Rejected submission had already been credited", submission_id=submission_id)
    log_business_event(
        event_type="submission_rejected",
        details={"submission_id": submission_id, "reason": reason.strip()},
        user_id=actor_id,
    )
    return submission


def delete_submission(
    session: Session,
    submission_id: int,
    user_id: int,
    *,
    elevated: bool = False,
    storage=None,
) -> None:
    """Delete a queued / needs_review submission with its trail, then its stored media."""
    submission = _load(session, submission_id)
    if submission.user_id != user_id and not elevated:
        raise PermissionDenied("Only the owner or a moderator can delete this submission", submission_id=submission_id)
    if submission.status not in DELETABLE_STATUSES:
        raise InvalidStateTransition("Submission", submission_id, submission.status.value, "deleted")

    keys = [k for k in (submission.media_key, submission.thumbnail_key) if k]
    event_log.delete_events_for(session, submission_id)
    deleted = (
        session.query(Submission)
        .filter(Submission.id == submission_id, Submission.status.in_(DELETABLE_STATUSES))
        .delete(synchronize_session=False)
    )
    if deleted != 1:
        session.rollback()
        latest = session.get(Submission, submission_id, populate_existing=True)
        raise InvalidStateTransition(
            "Submission", submission_id, latest.status.value if latest else None, "deleted"
        )
    session.commit()
    session.expunge(submission)

    if storage is not None:
        for key in keys:
            try:
                storage.delete(key)
            except StorageUnavailable as e:
                logger.warning("Failed to delete stored media", submission_id=submission_id, key=key, error=str(e))
    logger.info("Submission deleted", submission_id=submission_id, by_user=user_id, elevated=elevated)


def update_details(
    session: Session,
    submission_id: int,
    user_id: int,
    *,
    title: Optional[str] = None,
    description: Optional[str] = None,
) -> Submission:
    """Owners may edit title / description while the submission is still queued."""
    submission = _load(session, submission_id)
    if submission.user_id != user_id:
        raise PermissionDenied("Only the owner can edit this submission", submission_id=submission_id)
    if submission.status != SubmissionStatus.QUEUED:
        raise InvalidStateTransition("Submission", submission_id, submission.status.value, "edited")
    if title is not None:
        submission.title = title
    if description is not None:
        submission.description = description
    session.commit()
    session.refresh(submission)
    return submission


def get_submission(session: Session, submission_id: int, user_id: int, *, elevated: bool = False) -> Submission:
    submission = _load(session, submission_id)
    if submission.user_id != user_id and not elevated:
        raise PermissionDenied("Access denied", submission_id=submission_id)
    return submission


def list_user_submissions(
    session: Session,
    user_id: int,
    *,
    status: Optional[SubmissionStatus] = None,
    limit: int = 50,
    offset: int = 0,
) -> List[Submission]:
    query = session.query(Submission).filter(Submission.user_id == user_id)
    if status is not None:
        query = query.filter(Submission.status == status)
    return query.order_by(Submission.created_at.desc(), Submission.id.desc()).offset(offset).limit(limit).all()


def moderation_queue(session: Session, *, limit: int = 50, offset: int = 0) -> List[Submission]:
    """Submissions awaiting a decision, oldest first."""
    return (
        session.query(Submission)
        .filter(Submission.status.in_(MODERATION_QUEUE_STATUSES))
        .order_by(Submission.created_at.asc(), Submission.id.asc())
        .offset(offset)
        .limit(limit)
        .all()
    )


def requeue_pending(session: Session) -> List[int]:
    """Ids of submissions the worker still owes something (re-enqueued at startup).

    That is every ``queued`` submission plus ``auto_verified`` ones whose
    credit never committed.
    """
    credited = (
        session.query(SubmissionEvent.id)
        .filter(
            SubmissionEvent.submission_id == Submission.id,
            SubmissionEvent.event_type == SubmissionEventType.POINTS_CREDITED,
        )
        .exists()
    )
    rows = (
        session.query(Submission.id)
        .filter(
            or_(
                Submission.status == SubmissionStatus.QUEUED,
                and_(Submission.status == SubmissionStatus.AUTO_VERIFIED, ~credited),
            )
        )
        .order_by(Submission.id.asc())
        .all()
    )
    return [row[0] for row in rows]


__all__ = [
    "ALLOWED_TRANSITIONS",
    "can_transition",
    "transition",
    "awaiting_credit",
    "credit_submission",
    "create_submission",
    "approve",
    "reject",
    "delete_submission",
    "update_details",
    "get_submission",
    "list_user_submissions",
    "moderation_queue",
    "requeue_pending",
]
