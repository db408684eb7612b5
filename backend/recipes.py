import json
import logging
import math
import re
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import ValidationError as SchemaError
from pydantic.alias_generators import to_snake

from auth import get_current_user
from database import get_db
from errors import NotFoundError, PermissionDeniedError, UpstreamError, ValidationError, api_response
from media import MediaStore, delete_quietly, get_media_store, upload_file
from models import CATEGORIES, OwnerSummary, Recipe, RecipeOut, User
from settings import Settings, get_settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/recipes", tags=["recipes"])

SORTABLE_FIELDS = {"created_at", "updated_at", "title", "prep_time", "cook_time", "difficulty", "category"}


def owner_lookup() -> List[dict]:
    return [
        {
            "$lookup": {
                "from": "users",
                "localField": "owner",
                "foreignField": "id",
                "as": "owner_doc",
            }
        },
        {"$unwind": {"path": "$owner_doc", "preserveNullAndEmptyArrays": True}},
    ]


def to_owner(owner_doc: Optional[dict]) -> Optional[OwnerSummary]:
    if not owner_doc:
        return None
    return OwnerSummary(
        id=owner_doc["id"],
        username=owner_doc["username"],
        email=owner_doc.get("email"),
        avatar=owner_doc.get("avatar"),
    )


def search_conditions(query: Optional[str]) -> dict:
    if not query:
        return {}
    pattern = {"$regex": re.escape(query), "$options": "i"}
    return {"$or": [{"title": pattern}, {"description": pattern}]}


def sort_stage(sort_by: Optional[str], sort_type: Optional[str]) -> Dict[str, int]:
    if not sort_by:
        return {"created_at": -1}
    field = to_snake(sort_by)
    if field not in SORTABLE_FIELDS:
        raise ValidationError(f"Cannot sort by {sort_by}")
    return {field: -1 if sort_type == "desc" else 1}


def parse_list_field(values: Optional[List[str]]) -> List[str]:
    """Accept repeated form fields or a single JSON-encoded array."""
    if not values:
        return []
    if len(values) == 1 and values[0].strip().startswith("["):
        try:
            parsed = json.loads(values[0])
        except json.JSONDecodeError:
            raise ValidationError("Malformed list field")
        return [str(item) for item in parsed]
    return [value for value in values if value.strip()]


async def recipes_with_likes(db: AsyncIOMotorDatabase, docs: List[dict]) -> List[RecipeOut]:
    result = []
    for doc in docs:
        likes_count = await db.likes.count_documents({"recipe": doc["id"]})
        result.append(to_recipe_out(doc, likes_count))
    return result


def to_recipe_out(doc: dict, likes_count: int = 0) -> RecipeOut:
    data = {k: v for k, v in doc.items() if k not in ("_id", "owner", "owner_doc")}
    return RecipeOut(**data, owner=to_owner(doc.get("owner_doc")), likes_count=likes_count)


async def find_recipes(
    db: AsyncIOMotorDatabase,
    conditions: dict,
    sort: Dict[str, int],
    page: int = 1,
    limit: Optional[int] = None,
) -> List[RecipeOut]:
    pipeline = [{"$match": conditions}, {"$sort": sort}]
    if limit is not None:
        pipeline += [{"$skip": (page - 1) * limit}, {"$limit": limit}]
    pipeline += owner_lookup()
    docs = await db.recipes.aggregate(pipeline).to_list(length=None)
    return await recipes_with_likes(db, docs)


async def get_recipe_or_404(db: AsyncIOMotorDatabase, recipe_id: str) -> RecipeOut:
    pipeline = [{"$match": {"id": recipe_id}}, *owner_lookup()]
    docs = await db.recipes.aggregate(pipeline).to_list(length=None)
    if not docs:
        raise NotFoundError(f"Recipe with ID {recipe_id} not found")
    return (await recipes_with_likes(db, docs))[0]


def check_paging(page: int, limit: int) -> None:
    if page < 1 or limit < 1:
        raise ValidationError("page and limit must be positive")


@router.get("/")
async def get_all_recipes(
    page: int = 1,
    limit: int = 100,
    query: Optional[str] = None,
    current_user: User = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    check_paging(page, limit)
    conditions = search_conditions(query)
    recipes = await find_recipes(db, conditions, {"created_at": -1}, page, limit)
    total = await db.recipes.count_documents(conditions)

    return api_response(
        200,
        {"recipes": [r.to_api() for r in recipes], "totalRecipes": total},
        "Recipes fetched successfully",
    )


@router.get("/recipeLimit")
async def get_recipe_limit(
    page: int = 1,
    limit: int = 5,
    query: Optional[str] = None,
    sortBy: Optional[str] = None,
    sortType: Optional[str] = None,
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    check_paging(page, limit)
    conditions = search_conditions(query)
    recipes = await find_recipes(db, conditions, sort_stage(sortBy, sortType), page, limit)
    total = await db.recipes.count_documents(conditions)

    return api_response(
        200,
        {
            "recipes": [r.to_api() for r in recipes],
            "totalRecipes": total,
            "currentPage": page,
            "totalPages": math.ceil(total / limit),
        },
        "Recipes fetched successfully",
    )


@router.post("/publish")
async def publish_recipe(
    title: str = Form(""),
    description: str = Form(""),
    type: str = Form("image"),
    category: Optional[str] = Form(None),
    difficulty: Optional[str] = Form(None),
    prepTime: Optional[int] = Form(None),
    cookTime: Optional[int] = Form(None),
    ingredients: Optional[List[str]] = Form(None),
    steps: Optional[List[str]] = Form(None),
    mediaFile: Optional[UploadFile] = File(None),
    current_user: User = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
    store: MediaStore = Depends(get_media_store),
    settings: Settings = Depends(get_settings),
):
    if not title.strip() or not description.strip():
        raise ValidationError("Title and description are required")
    if category not in CATEGORIES:
        raise ValidationError("Invalid recipe category")
    if mediaFile is None or not mediaFile.filename:
        raise ValidationError("Media file is required")

    fields = {
        "title": title,
        "description": description,
        "type": type,
        "owner": current_user.id,
        "ingredients": parse_list_field(ingredients),
        "steps": parse_list_field(steps),
        "difficulty": difficulty,
        "prep_time": prepTime,
        "cook_time": cookTime,
        "category": category,
    }
    try:
        # Validate before spending an upload on a bad request
        Recipe.model_validate({**fields, "media_file": "pending"})
    except SchemaError as exc:
        first = exc.errors()[0]
        raise ValidationError(f"{first['loc'][0]}: {first['msg']}")

    media = await upload_file(store, mediaFile, settings)
    if media is None:
        raise UpstreamError("Error uploading media file")

    recipe = Recipe.model_validate({**fields, "media_file": media.url})
    try:
        await db.recipes.insert_one(recipe.model_dump())
    except Exception:
        await delete_quietly(store, media.url)
        raise

    created = await get_recipe_or_404(db, recipe.id)
    return api_response(200, created.to_api(), "Recipe created successfully")


@router.get("/{recipe_id}")
async def get_recipe(recipe_id: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    recipe = await get_recipe_or_404(db, recipe_id)
    return api_response(200, recipe.to_api(), "Recipe fetched successfully")


@router.delete("/{recipe_id}")
async def delete_recipe(
    recipe_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
    store: MediaStore = Depends(get_media_store),
):
    recipe = await db.recipes.find_one({"id": recipe_id}, {"_id": 0})
    if not recipe:
        raise NotFoundError(f"Recipe with {recipe_id} not found")
    if recipe["owner"] != current_user.id:
        raise PermissionDeniedError("You do not have permission to delete this recipe")

    await delete_quietly(store, recipe.get("media_file"))
    await db.recipes.delete_one({"id": recipe_id})
    await db.likes.delete_many({"recipe": recipe_id})

    return api_response(200, None, "Recipe deleted successfully")
