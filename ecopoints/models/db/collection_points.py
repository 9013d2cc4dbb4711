from __future__ import annotations
"""SQLAlchemy model for registered waste collection points."""
from datetime import datetime
from sqlalchemy import Integer, String, Float, DateTime, Boolean, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ecopoints.database import Base
from ecopoints.utils.time import utc_now

class CollectionPoint(Base):
    __tablename__ = "collection_points"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    latitude: Mapped[float] = mapped_column(Float, nullable=False)
    longitude: Mapped[float] = mapped_column(Float, nullable=False)
    radius_m: Mapped[float] = mapped_column(Float, nullable=False, default=50.0)
    active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utc_now)

    __table_args__ = (
        CheckConstraint("radius_m > 0", name="collection_point_radius_positive"),
        CheckConstraint("latitude BETWEEN -90 AND 90", name="collection_point_latitude_range"),
        CheckConstraint("longitude BETWEEN -180 AND 180", name="collection_point_longitude_range"),
    )
