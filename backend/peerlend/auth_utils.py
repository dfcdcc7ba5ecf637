"""Bearer-token authentication and role checks for the PeerLend API.

Tokens are issued by the identity service; this module only verifies them.
``create_access_token`` exists for tooling and tests.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from peerlend.config import settings
from peerlend.database import get_db
from peerlend.models.user import User, UserRole

security = HTTPBearer()

ALGORITHM = "HS256"
ACCESS_TOKEN_TYPE = "access"


def create_access_token(user_id: int, expires_delta: Optional[timedelta] = None) -> str:
    now = datetime.now(timezone.utc)
    claims = {
        "sub": str(user_id),
        "type": ACCESS_TOKEN_TYPE,
        "iat": now,
        "exp": now + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes)),
        "jti": uuid.uuid4().hex,
    }
    return jwt.encode(claims, settings.secret_key, algorithm=ALGORITHM)


def subject_of(token: str) -> int:
    """Return the user id an access token was issued for.

    Raises JWTError for a bad signature or expiry, ValueError for anything
    that is not an access token with an integer subject.
    """
    payload = jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    if payload.get("type") != ACCESS_TOKEN_TYPE:
        raise ValueError("not an access token")
    return int(payload["sub"])


def user_id_from_token(token: str) -> Optional[int]:
    """Like ``subject_of`` but returns None on failure; for request logging."""
    try:
        return subject_of(token)
    except (JWTError, ValueError, KeyError, TypeError):
        return None


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> User:
    unauthorized = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        user_id = subject_of(credentials.credentials)
    except (JWTError, ValueError, KeyError, TypeError):
        raise unauthorized

    user = await db.get(User, user_id)
    if user is None or not user.is_active:
        raise unauthorized
    if user.is_blocked:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is blocked")
    return user


def require_roles(*roles: UserRole):
    """Dependency factory: the caller must hold one of ``roles``."""
    async def role_checker(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return current_user
    return role_checker
