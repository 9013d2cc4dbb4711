"""
User registration and profile endpoints.
"""
import secrets
import string
import time
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, status, Request, Header
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ecopoints.api.deps import get_db, get_current_user, check_admin_access
from ecopoints.models.db import User
from ecopoints.models.db.enums import UserRole
from ecopoints.models.schemas.users import UserCreate, UserCreated, UserRead
from ecopoints.services import wallet_ledger
from ecopoints.utils import get_logger, log_business_event, log_performance

router = APIRouter()
logger = get_logger(__name__)


def generate_api_key() -> str:
    """Generate a random 32 character API key."""
    alphabet = string.ascii_letters + string.digits
    return ''.join(secrets.choice(alphabet) for _ in range(32))


@router.post(
    "/",
    response_model=UserCreated,
    status_code=status.HTTP_201_CREATED,
    summary="Register a user",
    description="Tourists can self-register; moderator, council and admin accounts need the X-Admin-Key header"
)
async def create_user(
    user_data: UserCreate,
    request: Request,
    db: Session = Depends(get_db),
    x_admin_key: Optional[str] = Header(None),
) -> UserCreated:
    start_time = time.time()
    request_id = request.headers.get("X-Request-ID", "unknown")

    if user_data.role != UserRole.TOURIST:
        check_admin_access(x_admin_key)

    logger.info(
        "User registration started",
        user_name=user_data.name,
        user_role=user_data.role.value,
        request_id=request_id
    )

    duplicate = db.query(User).filter(
        (User.email == user_data.email) | (User.name == user_data.name)
    ).first()
    if duplicate:
        logger.warning(
            "User registration failed: duplicate name or email",
            existing_user_id=duplicate.id,
            request_id=request_id
        )
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A user with this name or email already exists"
        )

    try:
        new_user = User(
            name=user_data.name,
            email=user_data.email,
            api_key=generate_api_key(),
            role=user_data.role,
        )
        db.add(new_user)
        db.flush()
        wallet_ledger.ensure_wallet(db, new_user.id)
        db.commit()
        db.refresh(new_user)
    except IntegrityError:
        db.rollback()
        logger.warning("User registration lost a uniqueness race", request_id=request_id)
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="A user with this name or email already exists"
        )

    log_business_event(
        event_type="user_created",
        details={"user_name": new_user.name, "user_role": new_user.role.value},
        user_id=new_user.id,
        request_id=request_id
    )
    log_performance(
        operation="create_user",
        duration_ms=(time.time() - start_time) * 1000,
        additional_data={"user_id": new_user.id, "role": new_user.role.value}
    )
    return UserCreated.model_validate(new_user)


@router.get(
    "/me",
    response_model=UserRead,
    summary="Current user profile"
)
async def get_me(
    current_user: User = Depends(get_current_user)
) -> UserRead:
    return UserRead.model_validate(current_user)
