"""Notification Repository - Data access for notification outbox

Outbox items are claimed with an atomic lock so that several scheduler
processes never deliver the same notification twice.
"""
from typing import Any, Dict, List, Optional
from datetime import datetime, timedelta
from pymongo.collection import Collection
from pymongo import ASCENDING, ReturnDocument
from pymongo.errors import PyMongoError

from .mongo_client import get_collection
from ..domain.models import NotificationOutbox
from ..domain.enums import NotificationStatus
from ..domain.errors import NotFoundError
from ..utils.logger import get_logger
from ..utils.time import utc_now
from ..config.settings import settings

logger = get_logger(__name__)

UNLOCKED = {"locked_until": None, "locked_by": None}


def _lock_free(now: datetime) -> Dict[str, Any]:
    return {"$or": [{"locked_until": {"$lte": now}}, {"locked_until": None}]}


def retry_delay(retry_count: int) -> timedelta:
    """1, 2, 4, 8... minutes after the n-th failed attempt"""
    return timedelta(minutes=2 ** retry_count)


class NotificationRepository:

    def __init__(self, collection: Optional[Collection] = None):
        self._outbox: Collection = collection if collection is not None else get_collection("notification_outbox")

    @staticmethod
    def _to_model(doc: Dict[str, Any]) -> NotificationOutbox:
        doc.pop("_id", None)
        return NotificationOutbox.model_validate(doc)

    def _update(self, notification_id: str, fields: Dict[str, Any]) -> NotificationOutbox:
        doc = self._outbox.find_one_and_update(
            {"notification_id": notification_id},
            {"$set": fields},
            return_document=ReturnDocument.AFTER
        )
        if doc is None:
            raise NotFoundError(f"Notification {notification_id} not found")
        return self._to_model(doc)

    def create_notification(self, notification: NotificationOutbox) -> NotificationOutbox:
        self._outbox.insert_one({"_id": notification.notification_id, **notification.model_dump()})
        logger.info(
            f"Queued {notification.template_key.value} for {len(notification.recipients)} recipient(s)",
            extra={"notification_id": notification.notification_id, "expense_id": notification.expense_id}
        )
        return notification

    def get_notification(self, notification_id: str) -> Optional[NotificationOutbox]:
        doc = self._outbox.find_one({"notification_id": notification_id})
        return self._to_model(doc) if doc else None

    def get_pending_notifications(self, limit: int = 100) -> List[NotificationOutbox]:
        """Due, unlocked PENDING items, oldest first; empty on database errors"""
        now = utc_now()
        due = {"$or": [{"next_retry_at": {"$lte": now}}, {"next_retry_at": None}]}

        try:
            cursor = self._outbox.find(
                {"status": NotificationStatus.PENDING.value, "$and": [due, _lock_free(now)]}
            ).sort("created_at", ASCENDING).limit(limit)
            return [self._to_model(doc) for doc in cursor]
        except PyMongoError as e:
            logger.error(f"Could not read the notification outbox: {e}")
            return []

    def acquire_lock(self, notification_id: str, lock_by: str, lock_duration_seconds: int = 60) -> bool:
        """True when `lock_by` now owns the item until the lock expires"""
        now = utc_now()
        claimed = self._outbox.find_one_and_update(
            {
                "notification_id": notification_id,
                "status": NotificationStatus.PENDING.value,
                **_lock_free(now)
            },
            {"$set": {"locked_until": now + timedelta(seconds=lock_duration_seconds), "locked_by": lock_by}}
        )
        return claimed is not None

    def release_lock(self, notification_id: str, lock_by: Optional[str] = None) -> bool:
        """Unlock; when `lock_by` is given only that owner's lock is released"""
        query: Dict[str, Any] = {"notification_id": notification_id}
        if lock_by:
            query["locked_by"] = lock_by
        return self._outbox.update_one(query, {"$set": UNLOCKED}).modified_count > 0

    def mark_sent(self, notification_id: str) -> NotificationOutbox:
        sent = self._update(notification_id, {"status": NotificationStatus.SENT.value, "sent_at": utc_now(), **UNLOCKED})
        logger.info("Notification delivered", extra={"notification_id": notification_id})
        return sent

    def mark_failed(self, notification_id: str, error: str) -> NotificationOutbox:
        """
        Record a failed delivery attempt

        The item goes back to PENDING with an exponential backoff until
        `notification_max_retries` attempts have failed, then it is FAILED.
        """
        notification = self.get_notification(notification_id)
        if not notification:
            raise NotFoundError(f"Notification {notification_id} not found")

        attempts = notification.retry_count + 1
        exhausted = attempts >= settings.notification_max_retries
        status = NotificationStatus.FAILED if exhausted else NotificationStatus.PENDING

        failed = self._update(notification_id, {
            "status": status.value,
            "retry_count": attempts,
            "last_error": error[:500],
            "next_retry_at": None if exhausted else utc_now() + retry_delay(notification.retry_count),
            **UNLOCKED
        })
        logger.warning(
            f"Notification delivery failed (attempt {attempts})",
            extra={"notification_id": notification_id, "status": status.value, "details": error[:200]}
        )
        return failed
