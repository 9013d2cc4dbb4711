"""
Pydantic schemas for collection points.
"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field, ConfigDict


class CollectionPointCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    radius_m: float = Field(50.0, gt=0, le=5000)
    active: bool = True

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "name": "Baga Beach bins",
            "latitude": 15.5553,
            "longitude": 73.7517,
            "radius_m": 50
        }
    })


class CollectionPointUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    radius_m: Optional[float] = Field(None, gt=0, le=5000)
    active: Optional[bool] = None


class CollectionPointRead(BaseModel):
    id: int
    name: str
    latitude: float
    longitude: float
    radius_m: float
    active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class NearestCollectionPoint(CollectionPointRead):
    distance_m: float
