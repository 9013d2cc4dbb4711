"""Nearest active collection point lookup.

Great-circle (haversine) distance over all active points; a point matches
when the query falls inside its own radius (boundary inclusive). Among
matches the closest wins and equal distances go to the smaller id.
"""
from __future__ import annotations

import math
from typing import Iterable, Optional, Tuple

from sqlalchemy.orm import Session

from ecopoints.models.db.collection_points import CollectionPoint

EARTH_RADIUS_M = 6_371_000.0


def haversine_distance_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_M * c


def select_nearest(points: Iterable[CollectionPoint], lat: float, lng: float) -> Optional[Tuple[CollectionPoint, float]]:
    best: Optional[Tuple[CollectionPoint, float]] = None
    for point in points:
        if not point.active:
            continue
        distance = haversine_distance_m(lat, lng, point.latitude, point.longitude)
        if distance > point.radius_m:
            continue
        if best is None or (distance, point.id) < (best[1], best[0].id):
            best = (point, distance)
    return best


def find_nearest_active_point(session: Session, lat: float, lng: float) -> Optional[CollectionPoint]:
    """Return the matching collection point or None when no radius contains the location."""
    points = session.query(CollectionPoint).filter(CollectionPoint.active.is_(True)).all()
    match = select_nearest(points, lat, lng)
    return match[0] if match else None


__all__ = ["EARTH_RADIUS_M", "haversine_distance_m", "select_nearest", "find_nearest_active_point"]
