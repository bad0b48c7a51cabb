import logging
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from .database import get_db
from .models import User, UserRole
from .security_utils import create_jwt_token, verify_jwt_token

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)


def create_access_token(user: User) -> str:
    """Issue a bearer token whose subject is the user's id"""
    return create_jwt_token({"sub": str(user.id), "role": user.role, "email": user.email})


def _resolve_user(token: str, db: Session) -> User:
    payload = verify_jwt_token(token)
    if not payload:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    subject = payload.get("sub")
    try:
        user_id = int(subject)
    except (TypeError, ValueError):
        logger.error(f"❌ Token missing numeric subject. Available claims: {list(payload.keys())}")
        raise HTTPException(status_code=401, detail="Invalid token subject")

    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        logger.warning(f"⚠️ Token subject {user_id} does not match any user")
        raise HTTPException(status_code=401, detail="User not found")
    return user


async def get_current_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    """Resolve the acting user from a bearer JWT"""
    if not credentials:
        raise HTTPException(
            status_code=401,
            detail="Not authenticated. Please provide a valid Bearer token in the Authorization header.",
        )
    return _resolve_user(credentials.credentials, db)


async def get_current_provider(user: User = Depends(get_current_actor)) -> User:
    """Current user, who must be a provider (or an admin acting as one)"""
    if user.role not in (UserRole.PROVIDER.value, UserRole.ADMIN.value):
        logger.warning(f"⚠️ User {user.id} attempted a provider-only action")
        raise HTTPException(status_code=403, detail="Provider account required")
    return user


async def get_current_admin(user: User = Depends(get_current_actor)) -> User:
    if user.role != UserRole.ADMIN.value:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user
