from typing import Optional

from fastapi import Cookie, Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from motor.motor_asyncio import AsyncIOMotorDatabase

from database import get_db
from errors import AuthError
from models import SECRET_USER_FIELDS, User
from security import TokenService, get_token_service

ACCESS_COOKIE = "accessToken"
REFRESH_COOKIE = "refreshToken"

security = HTTPBearer(auto_error=False)


async def get_current_user(
    access_token: Optional[str] = Cookie(None, alias=ACCESS_COOKIE),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    tokens: TokenService = Depends(get_token_service),
    db: AsyncIOMotorDatabase = Depends(get_db),
) -> User:
    """
    Gate for protected routes: resolves the caller from the access token.

    The cookie wins over the bearer header. Expired tokens are not refreshed
    here; clients call /users/refresh-token themselves.
    """
    token = access_token
    if not token and credentials:
        token = credentials.credentials

    if not token:
        raise AuthError("Unauthorized request")

    user_id = tokens.validate_access(token)

    user = await db.users.find_one({"id": user_id}, SECRET_USER_FIELDS)
    if not user:
        raise AuthError("Invalid access token")

    return User(**user)
