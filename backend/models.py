import uuid
from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field
from pydantic.alias_generators import to_camel

CATEGORIES = [
    "APPETIZERS",
    "MAIN COURSES",
    "SIDE DISHES",
    "DESSERTS",
    "SOUPS & SALADS",
    "BEVERAGES",
    "SNACKS",
    "VEGETARIAN",
]

RecipeType = Literal["image", "video"]
RecipeDifficulty = Literal["easy", "intermediate", "advanced"]
VideoDifficulty = Literal["Easy", "Medium", "Hard"]

# Never leave the users collection through an API response
SECRET_USER_FIELDS = {"_id": 0, "password_hash": 0, "refresh_token": 0}


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ApiModel(BaseModel):
    """Snake-case in Mongo and Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_api(self) -> dict:
        return self.model_dump(by_alias=True)


# Users
class User(ApiModel):
    id: str = Field(default_factory=new_id)
    username: str
    email: str
    full_name: str
    avatar: str
    cover_image: str = ""
    bio: str = ""
    followers: List[str] = []
    following: List[str] = []
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class UserRegister(BaseModel):
    full_name: str
    email: EmailStr
    username: str
    password: str


class LoginRequest(BaseModel):
    username: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class ChangePasswordRequest(ApiModel):
    old_password: Optional[str] = None
    new_password: Optional[str] = None


class TokenPair(ApiModel):
    access_token: str
    refresh_token: str


class RefreshRequest(ApiModel):
    refresh_token: Optional[str] = None


class FollowCounts(ApiModel):
    followers_count: int
    following_count: int


class OwnerSummary(ApiModel):
    id: str
    username: str
    email: Optional[str] = None
    avatar: Optional[str] = None


class PublicProfile(ApiModel):
    id: str
    username: str
    full_name: str
    avatar: str
    cover_image: str = ""
    bio: str = ""
    followers_count: int = 0
    following_count: int = 0


# Notifications
class NotificationSender(ApiModel):
    id: str
    username: str
    avatar: Optional[str] = None
    full_name: Optional[str] = None


class Notification(ApiModel):
    id: str = Field(default_factory=new_id)
    message: str
    recipient: str
    sender: str
    read: bool = False
    created_at: datetime = Field(default_factory=utcnow)


class NotificationOut(ApiModel):
    id: str
    message: str
    recipient: str
    sender: Optional[NotificationSender] = None
    read: bool = False
    created_at: datetime


# Recipes
class Recipe(ApiModel):
    id: str = Field(default_factory=new_id)
    media_file: str
    title: str
    description: str
    type: RecipeType
    owner: str
    ingredients: List[str]
    steps: List[str]
    difficulty: RecipeDifficulty
    prep_time: int
    cook_time: int
    category: str
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class RecipeOut(ApiModel):
    id: str
    media_file: str
    title: str
    description: str
    type: RecipeType
    owner: Optional[OwnerSummary] = None
    ingredients: List[str] = []
    steps: List[str] = []
    difficulty: RecipeDifficulty
    prep_time: int
    cook_time: int
    category: str
    likes_count: int = 0
    created_at: datetime
    updated_at: Optional[datetime] = None


# Videos
class Video(ApiModel):
    id: str = Field(default_factory=new_id)
    video_file: str
    thumbnail: str
    title: str
    description: str
    duration: float = 0
    views: int = 0
    is_published: bool = True
    owner: str
    category: str = "Cooking"
    difficulty: VideoDifficulty = "Easy"
    prep_time: int = 0
    cook_time: int = 0
    ingredients: List[str] = []
    steps: List[str] = []
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class VideoOut(ApiModel):
    id: str
    video_file: str
    thumbnail: str
    title: str
    description: str
    duration: float = 0
    views: int = 0
    owner: Optional[OwnerSummary] = None
    category: str
    difficulty: str
    prep_time: int = 0
    cook_time: int = 0
    ingredients: List[str] = []
    steps: List[str] = []
    created_at: datetime


# Likes
class Like(BaseModel):
    id: str = Field(default_factory=new_id)
    liked_by: str
    recipe: Optional[str] = None
    video: Optional[str] = None
    comment: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
