from __future__ import annotations
"""SQLAlchemy models for video submissions and their audit events."""
from datetime import datetime
from typing import TYPE_CHECKING, Any
from sqlalchemy import Integer, BigInteger, String, Text, Float, DateTime, ForeignKey, JSON, Index, CheckConstraint, event, text
from sqlalchemy.orm import relationship, Mapped, mapped_column

if TYPE_CHECKING:  # pragma: no cover
    from .collection_points import CollectionPoint
from ecopoints.database import Base
from ecopoints.utils.time import utc_now
from .enums import SubmissionStatus, SubmissionEventType, status_enum

class Submission(Base):
    __tablename__ = "submissions"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    collection_point_id: Mapped[int] = mapped_column(Integer, ForeignKey("collection_points.id"), nullable=False, index=True)

    media_key: Mapped[str] = mapped_column(String, nullable=False)
    thumbnail_key: Mapped[str | None] = mapped_column(String, nullable=True)
    # Probed media metadata (filled by the verification worker)
    duration_s: Mapped[int | None] = mapped_column(Integer, nullable=True)
    size_bytes: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    width: Mapped[int | None] = mapped_column(Integer, nullable=True)
    height: Mapped[int | None] = mapped_column(Integer, nullable=True)
    codec: Mapped[str | None] = mapped_column(String, nullable=True)
    fingerprint: Mapped[str | None] = mapped_column(String(16), nullable=True, index=True)
    device_fingerprint: Mapped[str | None] = mapped_column(String, nullable=True)

    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    title: Mapped[str | None] = mapped_column(String(200), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    auto_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[SubmissionStatus] = mapped_column(
        status_enum(SubmissionStatus, "submission_status"), default=SubmissionStatus.QUEUED, nullable=False, index=True
    )
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    # System-generated note when the pipeline falls back to manual review
    review_note: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now, onupdate=utc_now)

    collection_point: Mapped["CollectionPoint"] = relationship("CollectionPoint")
    events: Mapped[list["SubmissionEvent"]] = relationship(
        "SubmissionEvent", order_by="SubmissionEvent.id", viewonly=True
    )

    __table_args__ = (
        CheckConstraint("auto_score IS NULL OR (auto_score BETWEEN 0 AND 100)", name="submission_auto_score_range"),
    )


class SubmissionEvent(Base):
    __tablename__ = "submission_events"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    submission_id: Mapped[int] = mapped_column(Integer, ForeignKey("submissions.id"), nullable=False, index=True)
    actor_id: Mapped[int | None] = mapped_column(Integer, ForeignKey("users.id"), nullable=True)
    event_type: Mapped[SubmissionEventType] = mapped_column(
        status_enum(SubmissionEventType, "submission_event_type"), nullable=False
    )
    meta: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    __table_args__ = (
        # At most one credit per submission, whichever path (worker or moderator) gets there first
        Index(
            "uq_submission_single_credit",
            "submission_id",
            unique=True,
            sqlite_where=text("event_type = 'points_credited'"),
            postgresql_where=text("event_type = 'points_credited'"),
        ),
    )


@event.listens_for(SubmissionEvent, "before_update")
def _refuse_event_mutation(mapper, connection, target):  # pragma: no cover - guard
    raise RuntimeError("submission events are append-only")
