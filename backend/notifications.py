import logging
from typing import List, Optional

from fastapi import APIRouter, Depends
from motor.motor_asyncio import AsyncIOMotorDatabase

from auth import get_current_user
from database import get_db
from errors import api_response
from models import Notification, NotificationOut, User
from realtime import ConnectionRegistry, get_registry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notification", tags=["notifications"])

LIST_LIMIT = 50


def sender_lookup() -> List[dict]:
    return [
        {
            "$lookup": {
                "from": "users",
                "localField": "sender",
                "foreignField": "id",
                "as": "sender_doc",
            }
        },
        {"$unwind": {"path": "$sender_doc", "preserveNullAndEmptyArrays": True}},
    ]


def to_notification_out(doc: dict, fields: List[str]) -> NotificationOut:
    sender_doc = doc.get("sender_doc")
    sender = None
    if sender_doc:
        sender = {"id": sender_doc["id"], **{f: sender_doc.get(f) for f in fields}}
    return NotificationOut(
        id=doc["id"],
        message=doc["message"],
        recipient=doc["recipient"],
        sender=sender,
        read=doc.get("read", False),
        created_at=doc["created_at"],
    )


class NotificationEmitter:
    """Durable write first, then a best-effort push over the registry."""

    PUSH_FIELDS = ["username", "avatar", "full_name"]

    def __init__(self, db: AsyncIOMotorDatabase, registry: ConnectionRegistry):
        self.db = db
        self.registry = registry

    async def persist(self, recipient_id: str, sender_id: str, message: str) -> Optional[NotificationOut]:
        notification = Notification(message=message, recipient=recipient_id, sender=sender_id)
        await self.db.notifications.insert_one(notification.model_dump())

        pipeline = [{"$match": {"id": notification.id}}, *sender_lookup()]
        docs = await self.db.notifications.aggregate(pipeline).to_list(length=None)
        if not docs:
            return None
        return to_notification_out(docs[0], self.PUSH_FIELDS)

    async def emit(self, recipient_id: str, sender_id: str, message: str) -> Optional[NotificationOut]:
        try:
            notification = await self.persist(recipient_id, sender_id, message)
        except Exception:
            # The triggering operation has already committed
            logger.exception("Notification error for recipient %s", recipient_id)
            return None

        if notification is not None:
            payload = notification.model_dump(mode="json", by_alias=True)
            await self.registry.publish(recipient_id, "notification", payload)
        return notification


def get_emitter(
    db: AsyncIOMotorDatabase = Depends(get_db),
    registry: ConnectionRegistry = Depends(get_registry),
) -> NotificationEmitter:
    return NotificationEmitter(db, registry)


@router.get("/message")
async def list_notifications(
    current_user: User = Depends(get_current_user),
    db: AsyncIOMotorDatabase = Depends(get_db),
):
    fields = ["username", "avatar"]
    pipeline = [
        {"$match": {"recipient": current_user.id}},
        {"$sort": {"created_at": -1}},
        {"$limit": LIST_LIMIT},
        *sender_lookup(),
    ]
    docs = await db.notifications.aggregate(pipeline).to_list(length=None)
    notifications = [to_notification_out(doc, fields).to_api() for doc in docs]

    return api_response(200, notifications, "Notifications fetched successfully")
