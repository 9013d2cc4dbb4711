"""
Pydantic schemas for user-related operations.
"""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field, EmailStr, ConfigDict, computed_field
from ..db.enums import UserRole, ROLE_CAPABILITIES


class UserCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    email: EmailStr
    role: UserRole = UserRole.TOURIST

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "name": "Asha Traveller",
            "email": "asha@example.com",
            "role": "tourist"
        }
    })


class UserRead(BaseModel):
    id: int
    name: str
    email: str
    is_active: bool
    role: UserRole
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @computed_field
    @property
    def capabilities(self) -> List[str]:
        return sorted(c.value for c in ROLE_CAPABILITIES.get(self.role, frozenset()))


class UserCreated(UserRead):
    """Returned once at registration; the only response that carries the API key."""
    api_key: Optional[str]
