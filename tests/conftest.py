"""
Shared test fixtures.

The app runs against an in-memory Motor substitute (mongomock-motor), a fake
media store and a fresh ConnectionRegistry per test.
"""

import asyncio
import os
import tempfile
from pathlib import Path
from typing import List, Optional

import pytest

os.environ.setdefault("MONGO_URL", "mongodb://localhost:27017")
os.environ.setdefault("DB_NAME", "recipe_share_test")
os.environ.setdefault("ACCESS_TOKEN_SECRET", "test-access-secret-for-testing-only")
os.environ.setdefault("REFRESH_TOKEN_SECRET", "test-refresh-secret-for-testing-only")
os.environ.setdefault("UPLOAD_TEMP_DIR", tempfile.mkdtemp(prefix="recipe-uploads-"))

from fastapi.testclient import TestClient  # noqa: E402
from mongomock_motor import AsyncMongoMockClient  # noqa: E402

from media import MediaAsset  # noqa: E402
from realtime import ConnectionRegistry  # noqa: E402
from settings import get_settings  # noqa: E402


class FakeMediaStore:
    def __init__(self):
        self.uploaded: List[str] = []
        self.deleted: List[str] = []
        self.fail_upload = False
        self.fail_delete = False
        self.upload_error: Optional[Exception] = None

    async def upload(self, local_path: Path) -> MediaAsset:
        assert local_path.exists()
        local_path.unlink()
        if self.upload_error is not None:
            raise self.upload_error
        if self.fail_upload:
            from errors import UpstreamError

            raise UpstreamError("File upload failed")

        n = len(self.uploaded) + 1
        kind = "video" if local_path.suffix == ".mp4" else "image"
        url = f"https://res.cloudinary.com/demo/{kind}/upload/v1700000000/uploads/file{n}{local_path.suffix}"
        self.uploaded.append(url)
        return MediaAsset(url=url, public_id=f"uploads/file{n}", duration=42.0 if kind == "video" else None)

    async def delete(self, url: str):
        if self.fail_delete:
            from errors import UpstreamError

            raise UpstreamError("Failed to delete file from Cloudinary")
        self.deleted.append(url)
        return {"result": "ok"}


class FakeConnection:
    def __init__(self, fail: bool = False):
        self.messages: list = []
        self.fail = fail

    async def send_json(self, data):
        if self.fail:
            raise RuntimeError("socket closed")
        self.messages.append(data)


class StuckConnection:
    """A socket whose send buffer never drains."""

    async def send_json(self, data):
        await asyncio.Event().wait()


class WrappedDb:
    """Database stand-in that swaps selected collections."""

    def __init__(self, db, **overrides):
        self._db = db
        self._overrides = overrides

    def __getattr__(self, name):
        if name in self._overrides:
            return self._overrides[name]
        return getattr(self._db, name)


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def db():
    return AsyncMongoMockClient()["recipe_share_test"]


@pytest.fixture
def media_store() -> FakeMediaStore:
    return FakeMediaStore()


@pytest.fixture
def registry() -> ConnectionRegistry:
    return ConnectionRegistry()


@pytest.fixture
def app(db, media_store, registry):
    from server import app

    app.state.db = db
    app.state.media_store = media_store
    app.state.registry = registry
    return app


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


def image_file(name: str = "avatar.png"):
    return (name, b"\x89PNG fake image bytes", "image/png")


def register_user(
    client: TestClient,
    username: str,
    full_name: str = "Test Cook",
    password: str = "s3cret-pass",
    email: Optional[str] = None,
) -> dict:
    response = client.post(
        "/api/v1/users/register",
        data={
            "fullName": full_name,
            "email": email or f"{username}@cookmail.com",
            "username": username,
            "password": password,
        },
        files={"avatar": image_file()},
    )
    assert response.status_code == 201, response.text
    return response.json()["data"]


def login_user(client: TestClient, username: str, password: str = "s3cret-pass") -> dict:
    response = client.post("/api/v1/users/login", json={"username": username, "password": password})
    assert response.status_code == 200, response.text
    # Keep callers explicit about who they are: use bearer headers, not the cookie jar
    client.cookies.clear()
    return response.json()["data"]


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def make_user(client):
    """Register and log in a user; returns (user, headers, tokens)."""

    def _make(username: str, full_name: str = "Test Cook", password: str = "s3cret-pass"):
        user = register_user(client, username, full_name=full_name, password=password)
        tokens = login_user(client, username, password)
        return user, bearer(tokens["accessToken"]), tokens

    return _make


def publish_recipe(client: TestClient, headers: dict, title: str = "Pasta al limone", **overrides):
    data = {
        "title": title,
        "description": "Bright and quick weeknight pasta",
        "type": "image",
        "category": "MAIN COURSES",
        "difficulty": "easy",
        "prepTime": "10",
        "cookTime": "15",
        "ingredients": ["pasta", "lemon", "butter"],
        "steps": ["boil", "toss"],
    }
    data.update(overrides)
    return client.post(
        "/api/v1/recipes/publish",
        data=data,
        files={"mediaFile": image_file("pasta.png")},
        headers=headers,
    )
