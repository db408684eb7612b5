import logging
from typing import List, Optional

from fastapi import APIRouter, Body, Cookie, Depends, File, Form, UploadFile
from fastapi.responses import JSONResponse
from motor.motor_asyncio import AsyncIOMotorDatabase
from email_validator import EmailNotValidError, validate_email
from pymongo.errors import DuplicateKeyError

from auth import ACCESS_COOKIE, REFRESH_COOKIE, get_current_user
from database import get_db
from errors import AuthError, ConflictError, NotFoundError, UpstreamError, ValidationError, api_response
from media import MediaAsset, MediaStore, delete_quietly, get_media_store, upload_file
from models import (
    SECRET_USER_FIELDS,
    ChangePasswordRequest,
    LoginRequest,
    PublicProfile,
    RefreshRequest,
    TokenPair,
    User,
    UserRegister,
    utcnow,
)
from recipes import find_recipes
from security import TokenService, get_token_service, hash_password, verify_password
from settings import Settings, get_settings
from social import SocialGraph, get_social_graph

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])


def set_session_cookies(response: JSONResponse, pair: TokenPair, settings: Settings) -> None:
    options = dict(httponly=True, secure=settings.is_production, samesite="strict")
    response.set_cookie(
        ACCESS_COOKIE,
        pair.access_token,
        max_age=int(settings.access_token_ttl.total_seconds()),
        **options,
    )
    response.set_cookie(
        REFRESH_COOKIE,
        pair.refresh_token,
        max_age=int(settings.refresh_token_ttl.total_seconds()),
        **options,
    )


def clear_session_cookies(response: JSONResponse, settings: Settings) -> None:
    options = dict(httponly=True, secure=settings.is_production, samesite="strict")
    response.delete_cookie(ACCESS_COOKIE, **options)
    response.delete_cookie(REFRESH_COOKIE, **options)


def normalize_email(value: str) -> str:
    """Stored and looked-up form of an email address."""
    try:
        return validate_email(value.strip(), check_deliverability=False).normalized.lower()
    except EmailNotValidError:
        raise ValidationError("Invalid email address")


async def discard_uploads(store: MediaStore, assets: List[Optional[MediaAsset]]) -> None:
    for asset in assets:
        if asset is not None:
            await delete_quietly(store, asset.url)


# Auth routes
@router.post("/register")
async def register(
    fullName: str = Form(""),
    email: str = Form(""),
    username: str = Form(""),
    password: str = Form(""),
    avatar: Optional[UploadFile] = File(None),
    coverImage: Optional[UploadFile] = File(None),
    db: AsyncIOMotorDatabase = Depends(get_db),
    store: MediaStore = Depends(get_media_store),
    settings: Settings = Depends(get_settings),
):
    if any(not field.strip() for field in (fullName, email, username, password)):
        raise ValidationError("All fields are required")

    data = UserRegister(
        full_name=fullName.strip(),
        email=normalize_email(email),
        username=username.strip().lower(),
        password=password,
    )

    existing = await db.users.find_one(
        {"$or": [{"username": data.username}, {"email": data.email}]}, {"_id": 0, "id": 1}
    )
    if existing:
        raise ConflictError("User with email or username already exists")

    if avatar is None or not avatar.filename:
        raise ValidationError("Avatar file is required")

    avatar_asset = await upload_file(store, avatar, settings)
    if avatar_asset is None:
        raise UpstreamError("Avatar upload failed")
    try:
        cover_asset = await upload_file(store, coverImage, settings)
    except Exception:
        await discard_uploads(store, [avatar_asset])
        raise

    user = User(
        username=data.username,
        email=data.email,
        full_name=data.full_name,
        avatar=avatar_asset.url,
        cover_image=cover_asset.url if cover_asset else "",
    )
    document = user.model_dump()
    document["password_hash"] = hash_password(data.password)

    try:
        await db.users.insert_one(document)
    except DuplicateKeyError:
        await discard_uploads(store, [avatar_asset, cover_asset])
        raise ConflictError("User with email or username already exists")
    except Exception:
        await discard_uploads(store, [avatar_asset, cover_asset])
        raise

    logger.info("Registered user %s", user.username)
    return api_response(201, user.to_api(), "User registered successfully")


@router.post("/login")
async def login(
    credentials: LoginRequest,
    db: AsyncIOMotorDatabase = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
    settings: Settings = Depends(get_settings),
):
    login_id = (credentials.username or credentials.email or "").strip()
    if not login_id:
        raise ValidationError("Username or email is required")
    if not credentials.password:
        raise ValidationError("Password is required")

    user = await db.users.find_one(
        {"$or": [{"username": login_id.lower()}, {"email": login_id.lower()}]}, {"_id": 0}
    )
    if not user:
        raise NotFoundError("User not found")

    if not verify_password(credentials.password, user.get("password_hash")):
        raise AuthError("Invalid credentials")

    pair = await tokens.issue(user["id"])
    logged_in = User(**user)

    response = api_response(
        200,
        {"user": logged_in.to_api(), **pair.to_api()},
        "Login successful",
    )
    set_session_cookies(response, pair, settings)
    return response


@router.post("/logout")
async def logout(
    current_user: User = Depends(get_current_user),
    tokens: TokenService = Depends(get_token_service),
    settings: Settings = Depends(get_settings),
):
    await tokens.revoke(current_user.id)

    response = api_response(200, {}, "Logout successful")
    clear_session_cookies(response, settings)
    return response


@router.post("/refresh-token")
async def refresh_access_token(
    body: Optional[RefreshRequest] = Body(None),
    refresh_cookie: Optional[str] = Cookie(None, alias=REFRESH_COOKIE),
    tokens: TokenService = Depends(get_token_service),
    settings: Settings = Depends(get_settings),
):
    incoming = (body.refresh_token if body else None) or refresh_cookie
    pair = await tokens.refresh(incoming)

    response = api_response(200, pair.to_api(), "Access token refreshed successfully")
    set_session_cookies(response, pair, settings)
    return response


@router.post("/change-password")
async def change_password(
    payload: ChangePasswordRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    if not payload.old_password or not payload.new_password:
        raise ValidationError("Old Password and New Password are required")

    stored = await db.users.find_one({"id": current_user.id}, {"_id": 0, "password_hash": 1})
    if not stored or not verify_password(payload.old_password, stored.get("password_hash")):
        raise ValidationError("Invalid old password")

    await db.users.update_one(
        {"id": current_user.id},
        {"$set": {"password_hash": hash_password(payload.new_password), "updated_at": utcnow()}},
    )
    return api_response(200, {}, "Password changed successfully")


@router.get("/current-user")
async def get_current_user_info(current_user: User = Depends(get_current_user)):
    return api_response(200, {"user": current_user.to_api()}, "User details fetched successfully")


@router.patch("/update-account")
async def update_account(
    fullName: Optional[str] = Form(None),
    email: Optional[str] = Form(None),
    bio: Optional[str] = Form(None),
    username: Optional[str] = Form(None),
    avatar: Optional[UploadFile] = File(None),
    coverImage: Optional[UploadFile] = File(None),
    current_user: User = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
    store: MediaStore = Depends(get_media_store),
    settings: Settings = Depends(get_settings),
):
    updates = {}
    if fullName and fullName.strip():
        updates["full_name"] = fullName.strip()
    if bio is not None:
        updates["bio"] = bio

    if email and email.strip():
        new_email = normalize_email(email)
        if new_email != current_user.email.lower():
            if await db.users.find_one({"email": new_email}, {"_id": 0, "id": 1}):
                raise ConflictError("Email already in use")
            updates["email"] = new_email

    if username and username.strip() and username.strip().lower() != current_user.username:
        new_username = username.strip().lower()
        if await db.users.find_one({"username": new_username}, {"_id": 0, "id": 1}):
            raise ConflictError("Username already taken")
        updates["username"] = new_username

    avatar_asset = await upload_file(store, avatar, settings)
    try:
        cover_asset = await upload_file(store, coverImage, settings)
    except Exception:
        await discard_uploads(store, [avatar_asset])
        raise

    if avatar_asset:
        updates["avatar"] = avatar_asset.url
    if cover_asset:
        updates["cover_image"] = cover_asset.url

    if updates:
        updates["updated_at"] = utcnow()
        try:
            await db.users.update_one({"id": current_user.id}, {"$set": updates})
        except DuplicateKeyError:
            await discard_uploads(store, [avatar_asset, cover_asset])
            raise ConflictError("Email or username already in use")
        except Exception:
            await discard_uploads(store, [avatar_asset, cover_asset])
            raise

    # Old media goes only once the profile no longer points at it
    if avatar_asset:
        await delete_quietly(store, current_user.avatar)
    if cover_asset:
        await delete_quietly(store, current_user.cover_image)

    updated = await db.users.find_one({"id": current_user.id}, SECRET_USER_FIELDS)
    return api_response(200, User(**updated).to_api(), "Account details updated successfully")


# Public profile and social actions
@router.get("/profile/{username}")
async def get_user_profile(username: str, db: AsyncIOMotorDatabase = Depends(get_db)):
    user = await db.users.find_one({"username": username.lower()}, SECRET_USER_FIELDS)
    if not user:
        raise NotFoundError("User not found")

    profile = PublicProfile(
        id=user["id"],
        username=user["username"],
        full_name=user["full_name"],
        avatar=user["avatar"],
        cover_image=user.get("cover_image") or "",
        bio=user.get("bio") or "",
        followers_count=len(user.get("followers") or []),
        following_count=len(user.get("following") or []),
    )
    recipes = await find_recipes(db, {"owner": user["id"]}, {"created_at": -1})

    return api_response(
        200,
        {"user": profile.to_api(), "recipes": [r.to_api() for r in recipes]},
        "Profile fetched",
    )


@router.post("/follow/{username}")
async def follow_user(
    username: str,
    current_user: User = Depends(get_current_user),
    graph: SocialGraph = Depends(get_social_graph),
):
    counts = await graph.follow(current_user, username)
    return api_response(200, counts.to_api(), "Followed")


@router.post("/unfollow/{username}")
async def unfollow_user(
    username: str,
    current_user: User = Depends(get_current_user),
    graph: SocialGraph = Depends(get_social_graph),
):
    counts = await graph.unfollow(current_user, username)
    return api_response(200, counts.to_api(), "Unfollowed")
