"""Per-user notification log."""
import logging
from datetime import datetime
from typing import Callable, List, Optional, Tuple

from errors import NotFound, Unauthorized
from schemas import Notification, NotificationType, User
from stores import Store

logger = logging.getLogger(__name__)

COLLECTION = "notification"


def assignment_link(course_id: str, assignment_id: str) -> str:
    return f"/courses/{course_id}/assignments/{assignment_id}"


class NotificationCenter:
    def __init__(self, store: Store, clock: Callable[[], datetime]):
        self.store = store
        self.clock = clock

    async def notify(self, user_id: str, type: NotificationType, message: str, link: str = "", assignment_id: Optional[str] = None) -> Notification:
        doc = await self.store.insert(COLLECTION, {
            "user_id": user_id,
            "message": message,
            "type": type,
            "read": False,
            "created_at": self.clock(),
            "link": link,
            "assignment_id": assignment_id,
        })
        logger.info("Notified %s (%s)", user_id, type)
        return Notification.model_validate(doc)

    async def notify_once(self, user_id: str, type: NotificationType, message: str, link: str, assignment_id: str) -> Tuple[Notification, bool]:
        """Create the notification unless this user already has one of this type for the assignment."""
        doc, created = await self.store.upsert(
            COLLECTION,
            {"user_id": user_id, "type": type, "assignment_id": assignment_id},
            on_insert={"message": message, "read": False, "created_at": self.clock(), "link": link},
        )
        if created:
            logger.info("Notified %s (%s) for %s", user_id, type, assignment_id)
        return Notification.model_validate(doc), created

    async def for_user(self, user_id: str) -> List[Notification]:
        docs = await self.store.find(COLLECTION, {"user_id": user_id}, sort=[("created_at", -1)])
        return [Notification.model_validate(d) for d in docs]

    async def unread_count(self, user_id: str) -> int:
        return await self.store.count(COLLECTION, {"user_id": user_id, "read": False})

    async def mark_read(self, actor: User, notification_id: str) -> Notification:
        doc = await self.store.get(COLLECTION, notification_id)
        if not doc:
            raise NotFound("Notification not found")
        if doc["user_id"] != actor.id:
            logger.warning("User %s tried to mark notification %s of %s", actor.id, notification_id, doc["user_id"])
            raise Unauthorized("Not your notification")
        if not doc["read"]:
            doc = await self.store.update(COLLECTION, notification_id, {"read": True})
        return Notification.model_validate(doc)

    async def mark_all_read(self, actor: User) -> int:
        count = await self.store.update_many(COLLECTION, {"user_id": actor.id, "read": False}, {"read": True})
        logger.info("Marked %d notifications read for %s", count, actor.id)
        return count
