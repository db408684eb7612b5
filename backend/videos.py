import logging
import math
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import ValidationError as SchemaError

from auth import get_current_user
from database import get_db
from errors import NotFoundError, PermissionDeniedError, UpstreamError, ValidationError, api_response
from media import MediaStore, delete_quietly, get_media_store, upload_file
from models import User, Video, VideoOut
from recipes import check_paging, owner_lookup, parse_list_field, search_conditions, sort_stage, to_owner
from settings import Settings, get_settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/videos", tags=["videos"])


def to_video_out(doc: dict) -> VideoOut:
    data = {k: v for k, v in doc.items() if k not in ("_id", "owner", "owner_doc")}
    return VideoOut(**data, owner=to_owner(doc.get("owner_doc")))


def video_recipe_out(doc: dict) -> VideoOut:
    """Video-type recipes are listed alongside uploaded videos."""
    return VideoOut(
        id=doc["id"],
        video_file=doc["media_file"],
        thumbnail=doc["media_file"],
        title=doc["title"],
        description=doc["description"],
        duration=(doc.get("prep_time", 0) + doc.get("cook_time", 0)) * 60,
        owner=to_owner(doc.get("owner_doc")),
        category=doc["category"],
        difficulty=doc["difficulty"],
        prep_time=doc.get("prep_time", 0),
        cook_time=doc.get("cook_time", 0),
        ingredients=doc.get("ingredients", []),
        steps=doc.get("steps", []),
        created_at=doc["created_at"],
    )


@router.get("/")
async def get_all_videos(
    page: int = 1,
    limit: int = 100,
    query: Optional[str] = None,
    sortBy: Optional[str] = None,
    sortType: Optional[str] = None,
    userId: Optional[str] = None,
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    check_paging(page, limit)
    conditions = search_conditions(query)
    if userId:
        conditions["owner"] = userId
    recipe_conditions = {**conditions, "type": "video"}

    def page_of(match: dict) -> List[dict]:
        return [
            {"$match": match},
            {"$sort": sort_stage(sortBy, sortType)},
            {"$skip": (page - 1) * limit},
            {"$limit": limit},
            *owner_lookup(),
        ]

    videos = await db.videos.aggregate(page_of(conditions)).to_list(length=None)
    video_recipes = await db.recipes.aggregate(page_of(recipe_conditions)).to_list(length=None)

    all_videos = [to_video_out(doc).to_api() for doc in videos]
    all_videos += [video_recipe_out(doc).to_api() for doc in video_recipes]

    total = await db.videos.count_documents(conditions)
    total += await db.recipes.count_documents(recipe_conditions)

    return api_response(
        200,
        {
            "videos": all_videos,
            "totalVideos": total,
            "currentPage": page,
            "totalPages": math.ceil(total / limit),
        },
        "Videos fetched successfully",
    )


@router.get("/{video_id}")
async def get_video(video_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    pipeline = [{"$match": {"id": video_id}}, *owner_lookup()]
    docs = await db.videos.aggregate(pipeline).to_list(length=None)
    if not docs:
        raise NotFoundError(f"Video with ID {video_id} not found")
    return api_response(200, to_video_out(docs[0]).to_api(), "Video fetched successfully")


@router.post("/publish")
async def publish_video(
    title: str = Form(""),
    description: str = Form(""),
    category: Optional[str] = Form(None),
    difficulty: Optional[str] = Form(None),
    prepTime: Optional[int] = Form(None),
    cookTime: Optional[int] = Form(None),
    ingredients: Optional[List[str]] = Form(None),
    steps: Optional[List[str]] = Form(None),
    videoFile: Optional[UploadFile] = File(None),
    thumbnail: Optional[UploadFile] = File(None),
    current_user: User = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
    store: MediaStore = Depends(get_media_store),
    settings: Settings = Depends(get_settings),
):
    if not title.strip():
        raise ValidationError("Title is required")
    if not description.strip():
        raise ValidationError("Description is required")
    if videoFile is None or not videoFile.filename:
        raise ValidationError("Video file is required")
    if thumbnail is None or not thumbnail.filename:
        raise ValidationError("Thumbnail is required")

    fields = {
        "title": title,
        "description": description,
        "owner": current_user.id,
        "category": category or "Cooking",
        "difficulty": difficulty or "Easy",
        "prep_time": prepTime or 0,
        "cook_time": cookTime or 0,
        "ingredients": parse_list_field(ingredients),
        "steps": parse_list_field(steps),
    }
    try:
        Video.model_validate({**fields, "video_file": "pending", "thumbnail": "pending"})
    except SchemaError as exc:
        first = exc.errors()[0]
        raise ValidationError(f"{first['loc'][0]}: {first['msg']}")

    video_asset = await upload_file(store, videoFile, settings)
    if video_asset is None:
        raise UpstreamError("Error uploading video file")
    try:
        thumbnail_asset = await upload_file(store, thumbnail, settings)
    except Exception:
        await delete_quietly(store, video_asset.url)
        raise
    if thumbnail_asset is None:
        await delete_quietly(store, video_asset.url)
        raise UpstreamError("Error uploading thumbnail")

    video = Video.model_validate(
        {
            **fields,
            "video_file": video_asset.url,
            "thumbnail": thumbnail_asset.url,
            "duration": video_asset.duration or 0,
        }
    )
    try:
        await db.videos.insert_one(video.model_dump())
    except Exception:
        await delete_quietly(store, video_asset.url)
        await delete_quietly(store, thumbnail_asset.url)
        raise

    pipeline = [{"$match": {"id": video.id}}, *owner_lookup()]
    docs = await db.videos.aggregate(pipeline).to_list(length=None)
    return api_response(200, to_video_out(docs[0]).to_api(), "Video published successfully")


@router.delete("/{video_id}")
async def delete_video(
    video_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
    store: MediaStore = Depends(get_media_store),
):
    video = await db.videos.find_one({"id": video_id}, {"_id": 0})
    if not video:
        raise NotFoundError(f"Video with {video_id} not found")
    if video["owner"] != current_user.id:
        raise PermissionDeniedError("You do not have permission to delete this video")

    await delete_quietly(store, video.get("video_file"))
    await delete_quietly(store, video.get("thumbnail"))
    await db.videos.delete_one({"id": video_id})
    await db.likes.delete_many({"video": video_id})

    return api_response(200, None, "Video deleted successfully")
