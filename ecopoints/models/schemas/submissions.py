"""
Pydantic schemas for video submissions and their audit trail.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field, ConfigDict

from ecopoints.config import SUBMISSION_SETTINGS
from ..db.enums import SubmissionEventType, SubmissionStatus


class MediaUploaded(BaseModel):
    media_key: str
    size_bytes: int


class SubmissionCreate(BaseModel):
    """Metadata for a video already uploaded through ``POST /submissions/media``."""
    media_key: str = Field(min_length=1, max_length=300)
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    recorded_at: datetime = Field(description="When the video was captured (ISO-8601; naive values are UTC)")
    device_fingerprint: Optional[str] = Field(None, max_length=200)
    title: Optional[str] = Field(None, max_length=int(SUBMISSION_SETTINGS["max_title_length"]))
    description: Optional[str] = Field(None, max_length=int(SUBMISSION_SETTINGS["max_description_length"]))

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "media_key": "media/2f1c9b7e0d4a4a8f9c3e5b6a7d8e9f01.mp4",
            "latitude": 15.5553,
            "longitude": 73.7517,
            "recorded_at": "2026-03-14T09:30:00Z",
            "title": "Dropping plastic at the beach bins"
        }
    })


class SubmissionUpdate(BaseModel):
    """Owner edits allowed while the submission is still queued."""
    title: Optional[str] = Field(None, max_length=int(SUBMISSION_SETTINGS["max_title_length"]))
    description: Optional[str] = Field(None, max_length=int(SUBMISSION_SETTINGS["max_description_length"]))


class SubmissionEventRead(BaseModel):
    id: int
    event_type: SubmissionEventType
    actor_id: Optional[int]
    meta: Optional[Dict[str, Any]]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SubmissionRead(BaseModel):
    id: int
    user_id: int
    collection_point_id: int
    status: SubmissionStatus
    auto_score: Optional[int]
    latitude: float
    longitude: float
    recorded_at: datetime
    title: Optional[str]
    description: Optional[str]
    duration_s: Optional[int]
    size_bytes: Optional[int]
    width: Optional[int]
    height: Optional[int]
    codec: Optional[str]
    rejection_reason: Optional[str]
    review_note: Optional[str]
    created_at: datetime
    updated_at: datetime
    media_url: Optional[str] = None
    thumbnail_url: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class SubmissionDetail(SubmissionRead):
    events: List[SubmissionEventRead] = []


class ModerationDecision(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


class RejectionRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=1000)
