"""
Password hashing and the session token service.

Access and refresh tokens are HS256 JWTs signed with separate secrets and
carrying {sub, iat, exp, jti}. Access tokens are stateless. The current
refresh token is stored on the user document; a refresh presenting any
other value is rejected, so each refresh invalidates the previous token.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends
from motor.motor_asyncio import AsyncIOMotorDatabase
from passlib.context import CryptContext

from database import get_db
from errors import InvalidTokenError, MissingTokenError, StaleTokenError, UnknownUserError
from models import TokenPair, new_id
from settings import Settings, get_settings

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: Optional[str]) -> bool:
    if not password or not password_hash:
        return False
    return pwd_context.verify(password, password_hash)


class TokenService:
    def __init__(self, db: AsyncIOMotorDatabase, settings: Settings):
        self.db = db
        self.settings = settings

    def _encode(self, user_id: str, secret: str, ttl: timedelta) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "sub": user_id,
            "iat": int(now.timestamp()),
            "exp": int((now + ttl).timestamp()),
            "jti": new_id(),
        }
        return jwt.encode(payload, secret, algorithm=self.settings.jwt_algorithm)

    def _decode(self, token: str, secret: str) -> str:
        try:
            payload = jwt.decode(token, secret, algorithms=[self.settings.jwt_algorithm])
        except jwt.ExpiredSignatureError:
            raise InvalidTokenError("Token has expired")
        except jwt.InvalidTokenError:
            raise InvalidTokenError("Invalid token")

        user_id = payload.get("sub")
        if not user_id:
            raise InvalidTokenError("Invalid token")
        return user_id

    def _mint(self, user_id: str) -> TokenPair:
        return TokenPair(
            access_token=self._encode(
                user_id, self.settings.access_token_secret, self.settings.access_token_ttl
            ),
            refresh_token=self._encode(
                user_id, self.settings.refresh_token_secret, self.settings.refresh_token_ttl
            ),
        )

    async def issue(self, user_id: str) -> TokenPair:
        """Mint a new pair and make its refresh token the only valid one."""
        pair = self._mint(user_id)
        await self.db.users.update_one(
            {"id": user_id},
            {"$set": {"refresh_token": pair.refresh_token}},
        )
        return pair

    def validate_access(self, token: str) -> str:
        return self._decode(token, self.settings.access_token_secret)

    async def refresh(self, refresh_token: Optional[str]) -> TokenPair:
        if not refresh_token:
            raise MissingTokenError()

        user_id = self._decode(refresh_token, self.settings.refresh_token_secret)

        user = await self.db.users.find_one({"id": user_id}, {"_id": 0, "refresh_token": 1})
        if not user:
            raise UnknownUserError()

        if refresh_token != user.get("refresh_token"):
            logger.warning("Rejected stale refresh token for user %s", user_id)
            raise StaleTokenError()

        # Conditional on the presented value so two concurrent refreshes
        # with the same token cannot both succeed
        pair = self._mint(user_id)
        result = await self.db.users.update_one(
            {"id": user_id, "refresh_token": refresh_token},
            {"$set": {"refresh_token": pair.refresh_token}},
        )
        if result.matched_count == 0:
            raise StaleTokenError()
        return pair

    async def revoke(self, user_id: str) -> None:
        await self.db.users.update_one({"id": user_id}, {"$unset": {"refresh_token": 1}})


def get_token_service(
    db: AsyncIOMotorDatabase = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> TokenService:
    return TokenService(db, settings)
