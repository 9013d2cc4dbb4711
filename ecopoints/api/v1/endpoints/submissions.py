"""
Video submission endpoints: upload, create, browse and moderate.
"""
import time
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, status, Request, Query
from sqlalchemy.orm import Session

from ecopoints.api.deps import get_db, get_current_user, require_capability, get_pagination_params, get_queue, get_storage
from ecopoints.config import STORAGE_SETTINGS
from ecopoints.errors import ValidationFailed
from ecopoints.jobs.worker_verification import enqueue_verification
from ecopoints.models.db import Submission, User
from ecopoints.models.db.enums import Capability, SubmissionStatus, has_capability
from ecopoints.models.schemas.base import ResponseBase
from ecopoints.models.schemas.submissions import (
    MediaUploaded, SubmissionCreate, SubmissionUpdate, SubmissionRead, SubmissionDetail, ModerationDecision,
    RejectionRequest
)
from ecopoints.services import submission_ledger
from ecopoints.storage import MediaStorage
from ecopoints.utils import get_logger, log_performance

router = APIRouter()
logger = get_logger(__name__)

_VIDEO_EXTENSIONS = {
    "video/mp4": ".mp4",
    "video/quicktime": ".mov",
    "video/webm": ".webm",
    "video/x-matroska": ".mkv",
    "video/3gpp": ".3gp",
}


def _with_urls(submission: Submission, storage: MediaStorage, schema=SubmissionRead):
    ttl = int(STORAGE_SETTINGS["signed_url_ttl_seconds"])
    read = schema.model_validate(submission)
    read.media_url = storage.signed_url(submission.media_key, ttl)
    if submission.thumbnail_key:
        read.thumbnail_url = storage.signed_url(submission.thumbnail_key, ttl)
    return read


@router.post(
    "/media",
    response_model=MediaUploaded,
    status_code=status.HTTP_201_CREATED,
    summary="Upload a video",
    description="Send the raw video bytes as the request body; the returned media_key is used to create the submission"
)
async def upload_media(
    request: Request,
    current_user: User = Depends(require_capability(Capability.SUBMIT)),
    storage: MediaStorage = Depends(get_storage),
) -> MediaUploaded:
    request_id = request.headers.get("X-Request-ID", "unknown")
    max_bytes = int(STORAGE_SETTINGS["max_upload_bytes"])

    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > max_bytes:
        raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail="Video is too large")

    data = await request.body()
    if not data:
        raise ValidationFailed("Empty upload")
    if len(data) > max_bytes:
        raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail="Video is too large")

    content_type = (request.headers.get("content-type") or "").split(";")[0].strip().lower()
    key = storage.store(data, prefix="media", extension=_VIDEO_EXTENSIONS.get(content_type, ""))
    logger.info(
        "Media uploaded",
        user_id=current_user.id,
        media_key=key,
        size_bytes=len(data),
        content_type=content_type or None,
        request_id=request_id
    )
    return MediaUploaded(media_key=key, size_bytes=len(data))


@router.post(
    "/",
    response_model=SubmissionRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create a submission",
    description="Register an uploaded video at a collection point; verification runs in the background"
)
async def create_submission(
    payload: SubmissionCreate,
    request: Request,
    current_user: User = Depends(require_capability(Capability.SUBMIT)),
    db: Session = Depends(get_db),
    storage: MediaStorage = Depends(get_storage),
    queue=Depends(get_queue),
) -> SubmissionRead:
    start_time = time.time()
    request_id = request.headers.get("X-Request-ID", "unknown")

    if not payload.media_key.startswith("media/"):
        raise ValidationFailed("Unknown media key", media_key=payload.media_key)

    logger.info(
        "Submission started",
        user_id=current_user.id,
        latitude=payload.latitude,
        longitude=payload.longitude,
        request_id=request_id
    )
    submission = submission_ledger.create_submission(
        db,
        user_id=current_user.id,
        media_key=payload.media_key,
        latitude=payload.latitude,
        longitude=payload.longitude,
        recorded_at=payload.recorded_at,
        device_fingerprint=payload.device_fingerprint,
        title=payload.title,
        description=payload.description,
    )
    # Committed already; a lost enqueue is picked up again at startup
    enqueue_verification(queue, submission.id, correlation_id=request_id)

    log_performance(
        operation="create_submission",
        duration_ms=(time.time() - start_time) * 1000,
        additional_data={"submission_id": submission.id}
    )
    return _with_urls(submission, storage)


@router.get(
    "/",
    response_model=List[SubmissionRead],
    summary="List my submissions"
)
async def list_my_submissions(
    status_filter: Optional[SubmissionStatus] = Query(None, alias="status"),
    pagination: dict = Depends(get_pagination_params),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    storage: MediaStorage = Depends(get_storage),
) -> List[SubmissionRead]:
    rows = submission_ledger.list_user_submissions(db, current_user.id, status=status_filter, **pagination)
    return [_with_urls(s, storage) for s in rows]


@router.get(
    "/moderation",
    response_model=List[SubmissionRead],
    summary="Moderation queue",
    description="Submissions awaiting a decision, oldest first"
)
async def list_moderation_queue(
    pagination: dict = Depends(get_pagination_params),
    current_user: User = Depends(require_capability(Capability.MODERATE)),
    db: Session = Depends(get_db),
    storage: MediaStorage = Depends(get_storage),
) -> List[SubmissionRead]:
    rows = submission_ledger.moderation_queue(db, **pagination)
    return [_with_urls(s, storage) for s in rows]


@router.get(
    "/{submission_id}",
    response_model=SubmissionDetail,
    summary="Submission detail with its event trail"
)
async def get_submission(
    submission_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    storage: MediaStorage = Depends(get_storage),
) -> SubmissionDetail:
    submission = submission_ledger.get_submission(
        db, submission_id, current_user.id, elevated=has_capability(current_user.role, Capability.MODERATE)
    )
    return _with_urls(submission, storage, SubmissionDetail)


@router.patch(
    "/{submission_id}",
    response_model=SubmissionRead,
    summary="Edit title or description",
    description="Owner only, while the submission is still queued"
)
async def update_submission(
    submission_id: int,
    payload: SubmissionUpdate,
    request: Request,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    storage: MediaStorage = Depends(get_storage),
) -> SubmissionRead:
    request_id = request.headers.get("X-Request-ID", "unknown")
    submission = submission_ledger.update_details(
        db, submission_id, current_user.id, title=payload.title, description=payload.description
    )
    logger.info(
        "Submission details updated",
        submission_id=submission_id,
        user_id=current_user.id,
        fields=sorted(payload.model_dump(exclude_unset=True)),
        request_id=request_id
    )
    return _with_urls(submission, storage)


@router.post(
    "/{submission_id}/approve",
    response_model=ResponseBase,
    summary="Approve a submission and credit its owner"
)
async def approve_submission(
    submission_id: int,
    request: Request,
    decision: Optional[ModerationDecision] = None,
    current_user: User = Depends(require_capability(Capability.MODERATE)),
    db: Session = Depends(get_db),
) -> ResponseBase:
    request_id = request.headers.get("X-Request-ID", "unknown")
    result = submission_ledger.approve(
        db, submission_id, current_user.id, reason=decision.reason if decision else None
    )
    logger.info(
        "Submission approved",
        submission_id=submission_id,
        moderator_id=current_user.id,
        points_credited=result["points_credited"],
        request_id=request_id
    )
    return ResponseBase(success=True, message="Submission approved", data=result)


@router.post(
    "/{submission_id}/reject",
    response_model=SubmissionRead,
    summary="Reject a submission"
)
async def reject_submission(
    submission_id: int,
    payload: RejectionRequest,
    request: Request,
    current_user: User = Depends(require_capability(Capability.MODERATE)),
    db: Session = Depends(get_db),
    storage: MediaStorage = Depends(get_storage),
) -> SubmissionRead:
    request_id = request.headers.get("X-Request-ID", "unknown")
    submission = submission_ledger.reject(db, submission_id, current_user.id, payload.reason)
    logger.info(
        "Submission rejected",
        submission_id=submission_id,
        moderator_id=current_user.id,
        request_id=request_id
    )
    return _with_urls(submission, storage)


@router.delete(
    "/{submission_id}",
    response_model=ResponseBase,
    summary="Delete a submission",
    description="Only queued or needs_review submissions can be deleted, by their owner or a moderator"
)
async def delete_submission(
    submission_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    storage: MediaStorage = Depends(get_storage),
) -> ResponseBase:
    submission_ledger.delete_submission(
        db,
        submission_id,
        current_user.id,
        elevated=has_capability(current_user.role, Capability.MODERATE),
        storage=storage,
    )
    return ResponseBase(success=True, message="Submission deleted", data={"submission_id": submission_id})
