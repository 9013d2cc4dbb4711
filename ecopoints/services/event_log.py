"""Append-only audit trail for submissions.

Events are added to the caller's unit of work and committed together with the
state change they describe; nothing here commits.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ecopoints.models.db.enums import SubmissionEventType
from ecopoints.models.db.submissions import SubmissionEvent


def append_event(
    session: Session,
    submission_id: int,
    event_type: SubmissionEventType,
    *,
    actor_id: Optional[int] = None,
    meta: Optional[Dict[str, Any]] = None,
) -> SubmissionEvent:
    event = SubmissionEvent(
        submission_id=submission_id,
        event_type=event_type,
        actor_id=actor_id,
        meta=meta or None,
    )
    session.add(event)
    return event


def list_events(session: Session, submission_id: int) -> List[SubmissionEvent]:
    return (
        session.query(SubmissionEvent)
        .filter(SubmissionEvent.submission_id == submission_id)
        .order_by(SubmissionEvent.id.asc())
        .all()
    )


def has_event(session: Session, submission_id: int, event_type: SubmissionEventType) -> bool:
    return (
        session.query(SubmissionEvent.id)
        .filter(SubmissionEvent.submission_id == submission_id, SubmissionEvent.event_type == event_type)
        .first()
        is not None
    )


def delete_events_for(session: Session, submission_id: int) -> int:
    """Remove a submission's trail; only used when the submission itself is deleted."""
    return (
        session.query(SubmissionEvent)
        .filter(SubmissionEvent.submission_id == submission_id)
        .delete(synchronize_session=False)
    )


__all__ = ["append_event", "list_events", "has_event", "delete_events_for"]
