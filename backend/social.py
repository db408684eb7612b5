"""
Follow graph mutations.

An edge actor -> target is stored twice: target id in actor.following and
actor id in target.followers. There are no multi-document transactions, so
each operation is a short compensating sequence:

1. a conditional write on the actor document, which also tells us whether
   the edge actually changed (only one of several concurrent identical
   requests can match);
2. an unconditional, idempotent write on the target document;
3. if (2) fails after (1) changed state, (1) is undone and the error raised.

Notifications are sent only when the edge actually changed.
"""

import logging

from fastapi import Depends
from motor.motor_asyncio import AsyncIOMotorDatabase

from database import get_db
from errors import NotFoundError, SelfFollowError
from models import FollowCounts, User
from notifications import NotificationEmitter, get_emitter

logger = logging.getLogger(__name__)


class SocialGraph:
    def __init__(self, db: AsyncIOMotorDatabase, emitter: NotificationEmitter):
        self.db = db
        self.emitter = emitter

    async def _resolve_target(self, actor: User, username: str, self_message: str) -> dict:
        target = await self.db.users.find_one(
            {"username": username.lower()}, {"_id": 0, "id": 1}
        )
        if not target:
            raise NotFoundError("User not found")
        if target["id"] == actor.id:
            raise SelfFollowError(self_message)
        return target

    async def _counts(self, user_id: str) -> FollowCounts:
        doc = await self.db.users.find_one(
            {"id": user_id}, {"_id": 0, "followers": 1, "following": 1}
        )
        doc = doc or {}
        return FollowCounts(
            followers_count=len(doc.get("followers") or []),
            following_count=len(doc.get("following") or []),
        )

    async def follow(self, actor: User, target_username: str) -> FollowCounts:
        target = await self._resolve_target(actor, target_username, "You cannot follow yourself")
        target_id = target["id"]

        result = await self.db.users.update_one(
            {"id": actor.id, "following": {"$ne": target_id}},
            {"$addToSet": {"following": target_id}},
        )
        created = result.matched_count == 1

        try:
            await self.db.users.update_one(
                {"id": target_id},
                {"$addToSet": {"followers": actor.id}},
            )
        except Exception:
            if created:
                logger.warning("Undoing follow %s -> %s", actor.id, target_id)
                await self.db.users.update_one(
                    {"id": actor.id}, {"$pull": {"following": target_id}}
                )
            raise

        if created:
            await self.emitter.emit(target_id, actor.id, f"{actor.full_name} followed you")

        return await self._counts(target_id)

    async def unfollow(self, actor: User, target_username: str) -> FollowCounts:
        target = await self._resolve_target(actor, target_username, "You cannot unfollow yourself")
        target_id = target["id"]

        result = await self.db.users.update_one(
            {"id": actor.id, "following": target_id},
            {"$pull": {"following": target_id}},
        )
        removed = result.matched_count == 1

        try:
            await self.db.users.update_one(
                {"id": target_id},
                {"$pull": {"followers": actor.id}},
            )
        except Exception:
            if removed:
                logger.warning("Undoing unfollow %s -> %s", actor.id, target_id)
                await self.db.users.update_one(
                    {"id": actor.id}, {"$addToSet": {"following": target_id}}
                )
            raise

        if removed:
            await self.emitter.emit(target_id, actor.id, f"{actor.full_name} unfollowed you")

        return await self._counts(target_id)


def get_social_graph(
    db: AsyncIOMotorDatabase = Depends(get_db),
    emitter: NotificationEmitter = Depends(get_emitter),
) -> SocialGraph:
    return SocialGraph(db, emitter)
