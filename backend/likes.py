from fastapi import APIRouter, Depends
from motor.motor_asyncio import AsyncIOMotorDatabase

from auth import get_current_user
from database import get_db
from errors import api_response
from models import Like, User
from recipes import recipes_with_likes
from videos import to_video_out

router = APIRouter(prefix="/likes", tags=["likes"])


async def toggle(db: AsyncIOMotorDatabase, user: User, field: str, target_id: str) -> bool:
    """Flip the like on a target. Returns True when it is now liked."""
    existing = await db.likes.find_one({field: target_id, "liked_by": user.id})
    if existing:
        await db.likes.delete_one({"id": existing["id"]})
        return False

    like = Like(liked_by=user.id, **{field: target_id})
    await db.likes.insert_one(like.model_dump(exclude_none=True))
    return True


@router.post("/toggle/video/{video_id}")
async def toggle_video_like(
    video_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    liked = await toggle(db, current_user, "video", video_id)
    message = "Video liked successfully" if liked else "Video unliked successfully"
    return api_response(200, {"isLiked": liked}, message)


@router.post("/toggle/comment/{comment_id}")
async def toggle_comment_like(
    comment_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    liked = await toggle(db, current_user, "comment", comment_id)
    message = "Comment liked successfully" if liked else "Comment unliked successfully"
    return api_response(200, {"isLiked": liked}, message)


@router.post("/toggle/recipe/{recipe_id}")
async def toggle_recipe_like(
    recipe_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    liked = await toggle(db, current_user, "recipe", recipe_id)
    message = "Recipe liked successfully" if liked else "Recipe unliked successfully"
    return api_response(200, {"isLiked": liked}, message)


@router.post("/favorite/recipe/{recipe_id}")
async def favorite_recipe(
    recipe_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    existing = await db.likes.find_one({"recipe": recipe_id, "liked_by": current_user.id})
    if existing:
        return api_response(200, {"isLiked": True}, "Recipe already favorited")

    like = Like(liked_by=current_user.id, recipe=recipe_id)
    await db.likes.insert_one(like.model_dump(exclude_none=True))
    return api_response(200, {"isLiked": True}, "Recipe favorited successfully")


@router.post("/unfavorite/recipe/{recipe_id}")
async def unfavorite_recipe(
    recipe_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    result = await db.likes.delete_one({"recipe": recipe_id, "liked_by": current_user.id})
    if result.deleted_count == 0:
        return api_response(200, {"isLiked": False}, "Recipe already not favorited")
    return api_response(200, {"isLiked": False}, "Recipe unfavorited successfully")


def liked_pipeline(user_id: str, field: str, collection: str) -> list:
    return [
        {"$match": {"liked_by": user_id, field: {"$exists": True}}},
        {"$sort": {"created_at": -1}},
        {
            "$lookup": {
                "from": collection,
                "localField": field,
                "foreignField": "id",
                "as": "target",
            }
        },
        {"$unwind": "$target"},
    ]


@router.get("/videos")
async def get_liked_videos(
    current_user: User = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    docs = await db.likes.aggregate(
        liked_pipeline(current_user.id, "video", "videos")
    ).to_list(length=None)

    liked = [
        {"id": doc["id"], "videoDetails": to_video_out(doc["target"]).to_api()}
        for doc in docs
    ]
    return api_response(200, liked, "Liked videos fetched successfully")


@router.get("/recipes")
async def get_liked_recipes(
    current_user: User = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    docs = await db.likes.aggregate(
        liked_pipeline(current_user.id, "recipe", "recipes")
    ).to_list(length=None)
    recipes = [doc["target"] for doc in docs]

    owner_ids = list({recipe["owner"] for recipe in recipes})
    owners = await db.users.find(
        {"id": {"$in": owner_ids}}, {"_id": 0, "id": 1, "username": 1, "email": 1, "avatar": 1}
    ).to_list(length=None)
    owners_by_id = {owner["id"]: owner for owner in owners}
    for recipe in recipes:
        recipe["owner_doc"] = owners_by_id.get(recipe["owner"])

    liked = await recipes_with_likes(db, recipes)
    return api_response(
        200,
        {"recipes": [recipe.to_api() for recipe in liked]},
        "Liked recipes fetched successfully",
    )
