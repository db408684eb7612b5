from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from starlette.requests import HTTPConnection

from settings import Settings


def connect(settings: Settings) -> AsyncIOMotorClient:
    # Lazy: no I/O happens until the first query
    return AsyncIOMotorClient(settings.mongo_url, tz_aware=True)


async def ensure_indexes(db: AsyncIOMotorDatabase) -> None:
    await db.users.create_index("id", unique=True)
    await db.users.create_index("username", unique=True)
    await db.users.create_index("email", unique=True)
    await db.notifications.create_index([("recipient", 1), ("created_at", -1)])
    await db.recipes.create_index("owner")
    await db.videos.create_index("owner")
    await db.likes.create_index([("liked_by", 1), ("recipe", 1)])


def get_db(connection: HTTPConnection) -> AsyncIOMotorDatabase:
    return connection.app.state.db
