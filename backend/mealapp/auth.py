"""
Bearer-token authentication and the admin gate
"""
import jwt
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional
from .models import Profile
from .db import get_db
from .config import settings
from .exceptions import AuthenticationError, AdminRequiredError

security = HTTPBearer(auto_error=False)

def decode_access_token(token: str) -> Optional[str]:
    """Decode a session token and return the user id"""
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
            audience=settings.JWT_AUDIENCE,
        )
    except jwt.PyJWTError:
        return None
    user_id = payload.get("sub")
    return str(user_id) if user_id else None

def is_admin_profile(profile: Optional[Profile]) -> bool:
    return profile is not None and (profile.role == "admin" or bool(profile.is_admin))

async def get_current_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> str:
    """
    Dependency resolving the caller from `Authorization: Bearer <token>`
    """
    if credentials is None or not credentials.credentials:
        raise AuthenticationError()

    user_id = decode_access_token(credentials.credentials)
    if user_id is None:
        raise AuthenticationError("Invalid authentication credentials")
    return user_id

async def require_admin(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> Profile:
    """
    Dependency allowing only profiles with role 'admin' or is_admin set
    """
    profile = await db.get(Profile, user_id)
    if not is_admin_profile(profile):
        raise AdminRequiredError(user_id)
    return profile
