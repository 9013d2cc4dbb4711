"""
Dependencies for authentication, database sessions and shared app services.
"""
import secrets
from typing import Generator, Optional
from fastapi import Depends, HTTPException, status, Header, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from ecopoints import config
from ecopoints.database import SessionLocal
from ecopoints.gateways import PayoutGatewayService
from ecopoints.models.db import User
from ecopoints.models.db.enums import Capability, has_capability
from ecopoints.storage import MediaStorage
from ecopoints.utils import get_logger

logger = get_logger(__name__)
security = HTTPBearer()


def _key_prefix(key: Optional[str]) -> Optional[str]:
    if not key:
        return key
    return key[:6] + "..." if len(key) > 6 else key


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.
    Rolls back on any error raised while the request holds the session.
    """
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """
    Resolve the caller from the Bearer API key.

    Raises:
        HTTPException: 401 if the key is unknown or the user is inactive
    """
    api_key = credentials.credentials
    user = db.query(User).filter(User.api_key == api_key, User.is_active.is_(True)).first()

    if not user:
        logger.warning("Authentication failed: invalid or inactive API key", api_key_prefix=_key_prefix(api_key))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or inactive API key",
            headers={"WWW-Authenticate": "Bearer"},
        )

    logger.debug("User authenticated", user_id=user.id, user_role=user.role.value)
    return user


def require_capability(capability: Capability):
    """
    Factory for a dependency that admits only users whose role grants ``capability``.
    """
    def capability_dependency(
        current_user: User = Depends(get_current_user)
    ) -> User:
        if not has_capability(current_user.role, capability):
            logger.warning(
                "Access denied: missing capability",
                user_id=current_user.id,
                user_role=current_user.role.value,
                required=capability.value,
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Access denied. Required capability: {capability.value}"
            )
        return current_user

    return capability_dependency


def check_admin_access(
    x_admin_key: Optional[str] = Header(None)
) -> bool:
    """
    Bootstrap check for the X-Admin-Key header (used to create staff accounts).
    """
    expected = config.ADMIN_BOOTSTRAP_KEY
    if not x_admin_key or not secrets.compare_digest(x_admin_key, expected):
        logger.warning("Admin access denied", provided_key=_key_prefix(x_admin_key))
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return True


def get_pagination_params(
    limit: int = 50,
    offset: int = 0
) -> dict:
    """
    Validate and return pagination parameters (limit 1-500, offset >= 0).
    """
    if limit < 1 or limit > 500:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Limit must be between 1 and 500"
        )
    if offset < 0:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Offset must be >= 0"
        )
    return {"limit": limit, "offset": offset}


def get_queue(request: Request):
    return request.app.state.verification_queue


def get_storage(request: Request) -> MediaStorage:
    return request.app.state.storage


def get_gateways(request: Request) -> PayoutGatewayService:
    return request.app.state.gateways
