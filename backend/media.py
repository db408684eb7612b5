"""
Media host integration.

Uploads arrive as multipart files, are spooled to a temp directory, then
handed to the media store which always removes the local copy. The
Cloudinary SDK is synchronous, so calls run in a worker thread.
"""

import logging
import os
import re
import shutil
import uuid
from pathlib import Path
from typing import Optional, Protocol

import cloudinary
import cloudinary.uploader
from fastapi import UploadFile
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool
from starlette.requests import HTTPConnection

from errors import UpstreamError, ValidationError
from settings import Settings

logger = logging.getLogger(__name__)

_UPLOAD_PATH = re.compile(r"/upload/([^?#]+)")
_VERSION_PREFIX = re.compile(r"^v\d+/")
_EXTENSION = re.compile(r"\.[^./?]+$")


class MediaAsset(BaseModel):
    url: str
    public_id: str
    duration: Optional[float] = None


class MediaStore(Protocol):
    async def upload(self, local_path: Path) -> MediaAsset: ...

    async def delete(self, url: str) -> Optional[dict]: ...


def public_id_from_url(url: str) -> Optional[str]:
    """
    Recover the public id from a delivery URL, e.g.

        https://res.cloudinary.com/demo/image/upload/v1712/recipes/pasta.jpg
        -> recipes/pasta
    """
    match = _UPLOAD_PATH.search(url or "")
    if not match:
        return None
    path = _VERSION_PREFIX.sub("", match.group(1))
    return _EXTENSION.sub("", path) or None


def resource_type_from_url(url: str) -> str:
    return "video" if "/video/upload" in url else "image"


class CloudinaryMediaStore:
    def __init__(self, settings: Settings):
        self.settings = settings
        self.configured = all(
            [
                settings.cloudinary_cloud_name,
                settings.cloudinary_api_key,
                settings.cloudinary_api_secret,
            ]
        )
        if self.configured:
            cloudinary.config(
                cloud_name=settings.cloudinary_cloud_name,
                api_key=settings.cloudinary_api_key,
                api_secret=settings.cloudinary_api_secret,
            )
        else:
            logger.error("Missing Cloudinary configuration in environment variables")

    async def upload(self, local_path: Path) -> MediaAsset:
        logger.info("Attempting upload from: %s", local_path)
        try:
            if not self.configured:
                raise UpstreamError("Media storage is not configured")
            if not local_path.exists():
                raise UpstreamError("Temporary file storage failed")

            try:
                response = await run_in_threadpool(
                    cloudinary.uploader.upload,
                    str(local_path),
                    resource_type="auto",
                    timeout=self.settings.upload_timeout_seconds,
                )
            except Exception as exc:
                logger.error("Cloudinary upload error for %s: %s", local_path, exc)
                raise UpstreamError("File upload failed")

            logger.info("Cloudinary upload success: %s", response.get("public_id"))
            return MediaAsset(
                url=response.get("secure_url") or response["url"],
                public_id=response["public_id"],
                duration=response.get("duration"),
            )
        finally:
            if local_path.exists():
                local_path.unlink()

    async def delete(self, url: str) -> Optional[dict]:
        if not url:
            return None
        public_id = public_id_from_url(url)
        if not public_id:
            logger.info("Could not extract public ID from URL: %s", url)
            return None

        try:
            return await run_in_threadpool(
                cloudinary.uploader.destroy,
                public_id,
                resource_type=resource_type_from_url(url),
                invalidate=True,
            )
        except Exception as exc:
            raise UpstreamError(f"Failed to delete file from Cloudinary: {exc}")


async def delete_quietly(store: MediaStore, url: Optional[str]) -> None:
    """Deletion failures must not fail the request that triggered them."""
    if not url:
        return
    try:
        await store.delete(url)
    except Exception:
        logger.warning("Media delete failed for %s", url, exc_info=True)


async def save_upload(upload: Optional[UploadFile], settings: Settings) -> Optional[Path]:
    """Spool an incoming file to the temp directory. Empty files are rejected."""
    if upload is None or not upload.filename:
        return None

    temp_dir = Path(settings.upload_temp_dir)
    temp_dir.mkdir(parents=True, exist_ok=True)
    suffix = Path(upload.filename).suffix
    path = temp_dir / f"{uuid.uuid4().hex}{suffix}"

    with path.open("wb") as buffer:
        await run_in_threadpool(shutil.copyfileobj, upload.file, buffer)

    if os.path.getsize(path) == 0:
        path.unlink()
        raise ValidationError("Invalid file content")
    return path


async def upload_file(
    store: MediaStore, upload: Optional[UploadFile], settings: Settings
) -> Optional[MediaAsset]:
    path = await save_upload(upload, settings)
    if path is None:
        return None
    return await store.upload(path)


def get_media_store(connection: HTTPConnection) -> MediaStore:
    return connection.app.state.media_store
