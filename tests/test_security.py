"""
Tests for password hashing and the token service.
"""

from datetime import datetime, timedelta, timezone

import jwt
import pytest
import pytest_asyncio

from errors import InvalidTokenError, MissingTokenError, StaleTokenError, UnknownUserError
from security import TokenService, hash_password, verify_password


@pytest_asyncio.fixture
async def user_id(db):
    await db.users.insert_one({"id": "user-1", "username": "chef", "refresh_token": None})
    return "user-1"


@pytest.fixture
def tokens(db, settings):
    return TokenService(db, settings)


class TestPasswords:

    def test_hash_is_salted(self):
        assert hash_password("pw") != hash_password("pw")

    def test_verify_roundtrip(self):
        hashed = hash_password("correct horse")
        assert verify_password("correct horse", hashed)
        assert not verify_password("wrong horse", hashed)

    def test_verify_without_hash(self):
        assert not verify_password("anything", None)
        assert not verify_password("", hash_password("x"))


class TestTokenService:

    @pytest.mark.asyncio
    async def test_issue_persists_refresh_token(self, db, tokens, user_id):
        pair = await tokens.issue(user_id)

        stored = await db.users.find_one({"id": user_id})
        assert stored["refresh_token"] == pair.refresh_token
        assert pair.access_token != pair.refresh_token

    @pytest.mark.asyncio
    async def test_validate_access(self, tokens, user_id):
        pair = await tokens.issue(user_id)
        assert tokens.validate_access(pair.access_token) == user_id

    @pytest.mark.asyncio
    async def test_refresh_token_is_not_an_access_token(self, tokens, user_id):
        pair = await tokens.issue(user_id)
        with pytest.raises(InvalidTokenError):
            tokens.validate_access(pair.refresh_token)

    def test_validate_garbage(self, tokens):
        with pytest.raises(InvalidTokenError):
            tokens.validate_access("not-a-jwt")

    def test_validate_expired(self, tokens, settings):
        past = datetime.now(timezone.utc) - timedelta(hours=2)
        token = jwt.encode(
            {"sub": "user-1", "iat": int(past.timestamp()), "exp": int((past + timedelta(hours=1)).timestamp())},
            settings.access_token_secret,
            algorithm="HS256",
        )
        with pytest.raises(InvalidTokenError) as exc_info:
            tokens.validate_access(token)
        assert "expired" in exc_info.value.message.lower()

    @pytest.mark.asyncio
    async def test_issue_overwrites_previous_refresh_token(self, tokens, user_id):
        first = await tokens.issue(user_id)
        await tokens.issue(user_id)

        with pytest.raises(StaleTokenError):
            await tokens.refresh(first.refresh_token)

    @pytest.mark.asyncio
    async def test_refresh_rotates(self, db, tokens, user_id):
        original = await tokens.issue(user_id)

        rotated = await tokens.refresh(original.refresh_token)

        assert rotated.refresh_token != original.refresh_token
        stored = await db.users.find_one({"id": user_id})
        assert stored["refresh_token"] == rotated.refresh_token

        with pytest.raises(StaleTokenError):
            await tokens.refresh(original.refresh_token)

        # The rotated token keeps working
        again = await tokens.refresh(rotated.refresh_token)
        assert again.refresh_token != rotated.refresh_token

    @pytest.mark.asyncio
    async def test_refresh_missing(self, tokens):
        with pytest.raises(MissingTokenError):
            await tokens.refresh(None)
        with pytest.raises(MissingTokenError):
            await tokens.refresh("")

    @pytest.mark.asyncio
    async def test_refresh_bad_signature(self, tokens, user_id):
        pair = await tokens.issue(user_id)
        with pytest.raises(InvalidTokenError):
            await tokens.refresh(pair.access_token)

    @pytest.mark.asyncio
    async def test_refresh_unknown_user(self, db, tokens, user_id):
        pair = await tokens.issue(user_id)
        await db.users.delete_one({"id": user_id})

        with pytest.raises(UnknownUserError):
            await tokens.refresh(pair.refresh_token)

    @pytest.mark.asyncio
    async def test_revoke(self, db, tokens, user_id):
        pair = await tokens.issue(user_id)
        await tokens.revoke(user_id)

        stored = await db.users.find_one({"id": user_id})
        assert "refresh_token" not in stored
        with pytest.raises(StaleTokenError):
            await tokens.refresh(pair.refresh_token)
