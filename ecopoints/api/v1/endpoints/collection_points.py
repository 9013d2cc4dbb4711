"""
Collection point endpoints: listing, nearest lookup and admin management.
"""
from typing import List
from fastapi import APIRouter, Depends, HTTPException, status, Request, Query
from sqlalchemy.orm import Session

from ecopoints.api.deps import get_db, get_current_user, require_capability
from ecopoints.models.db import CollectionPoint, User
from ecopoints.models.db.enums import Capability
from ecopoints.models.schemas.collection_points import (
    CollectionPointCreate, CollectionPointUpdate, CollectionPointRead, NearestCollectionPoint
)
from ecopoints.services.geo_matcher import haversine_distance_m, find_nearest_active_point
from ecopoints.utils import get_logger, log_business_event

router = APIRouter()
logger = get_logger(__name__)


@router.get(
    "/",
    response_model=List[CollectionPointRead],
    summary="List collection points"
)
async def list_collection_points(
    include_inactive: bool = Query(False),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> List[CollectionPointRead]:
    query = db.query(CollectionPoint)
    if not include_inactive:
        query = query.filter(CollectionPoint.active.is_(True))
    return [CollectionPointRead.model_validate(p) for p in query.order_by(CollectionPoint.id).all()]


@router.get(
    "/nearest",
    response_model=NearestCollectionPoint,
    summary="Nearest active collection point covering a location"
)
async def nearest_collection_point(
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
) -> NearestCollectionPoint:
    point = find_nearest_active_point(db, lat, lng)
    if point is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No active collection point within range"
        )
    distance = haversine_distance_m(lat, lng, point.latitude, point.longitude)
    return NearestCollectionPoint(
        **CollectionPointRead.model_validate(point).model_dump(),
        distance_m=round(distance, 2),
    )


@router.post(
    "/",
    response_model=CollectionPointRead,
    status_code=status.HTTP_201_CREATED,
    summary="Register a collection point"
)
async def create_collection_point(
    payload: CollectionPointCreate,
    request: Request,
    current_user: User = Depends(require_capability(Capability.MANAGE_COLLECTION_POINTS)),
    db: Session = Depends(get_db)
) -> CollectionPointRead:
    request_id = request.headers.get("X-Request-ID", "unknown")
    point = CollectionPoint(**payload.model_dump())
    db.add(point)
    db.commit()
    db.refresh(point)
    log_business_event(
        event_type="collection_point_created",
        details={"collection_point_id": point.id, "name": point.name, "radius_m": point.radius_m},
        user_id=current_user.id,
        request_id=request_id
    )
    return CollectionPointRead.model_validate(point)


@router.patch(
    "/{point_id}",
    response_model=CollectionPointRead,
    summary="Update or (de)activate a collection point"
)
async def update_collection_point(
    point_id: int,
    payload: CollectionPointUpdate,
    request: Request,
    current_user: User = Depends(require_capability(Capability.MANAGE_COLLECTION_POINTS)),
    db: Session = Depends(get_db)
) -> CollectionPointRead:
    request_id = request.headers.get("X-Request-ID", "unknown")
    point = db.get(CollectionPoint, point_id)
    if point is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Collection point {point_id} not found"
        )
    changes = payload.model_dump(exclude_unset=True)
    for field, value in changes.items():
        setattr(point, field, value)
    db.commit()
    db.refresh(point)
    logger.info(
        "Collection point updated",
        collection_point_id=point_id,
        changes=changes,
        user_id=current_user.id,
        request_id=request_id
    )
    return CollectionPointRead.model_validate(point)
