"""
MongoDB repository for notification records.

This module is the notification store:
- Validated creation of notification records from candidates
- Unread counting that degrades to zero when MongoDB is unavailable
- Idempotent mark-read scoped to the owning recipient
- Paginated inbox listings, newest first, optionally filtered by type
- Bulk cleanup when content or users are removed
- Admin summary of totals and per-type counts
"""

from typing import Any, Dict, List, Optional, Tuple

from bson import ObjectId
from bson.errors import InvalidDocument, InvalidId
from motor.motor_asyncio import AsyncIOMotorCollection
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import PyMongoError

from review_notify.app.core.exceptions import (
    ErrorCode,
    ValidationError,
    raise_invalid_identifier,
    raise_store_error,
    raise_validation_error
)
from review_notify.app.models.domain.notification import (
    Notification,
    NotificationCandidate,
    NotificationType
)
from review_notify.app.utils.logging import (
    database_logger,
    get_logger,
    performance_context
)
from review_notify.config.settings import NotificationSettings, get_settings

logger = get_logger(__name__)

NEWEST_FIRST = [("created_at", DESCENDING), ("_id", DESCENDING)]


class NotificationRepository:
    """
    MongoDB repository for notification records.

    Every query is scoped by recipient except the cleanup and summary
    operations, which are used by content/user removal and the admin view.
    """

    def __init__(
        self,
        collection: AsyncIOMotorCollection,
        settings: Optional[NotificationSettings] = None
    ):
        """
        Initialize notification repository.

        Args:
            collection: Motor collection holding notification documents
            settings: Paging limits (defaults to application settings)
        """
        self._collection = collection
        self._collection_name = getattr(collection, "name", "notifications")
        self.settings = settings or get_settings().notifications

    async def ensure_indexes(self) -> None:
        """Create the indexes the inbox and cleanup queries rely on."""
        try:
            await self._collection.create_index([
                ("recipient", ASCENDING),
                ("read", ASCENDING),
                ("created_at", DESCENDING)
            ], name="recipient_read_created")

            await self._collection.create_index([
                ("type", ASCENDING),
                ("recipient", ASCENDING)
            ], name="type_recipient")

            await self._collection.create_index([
                ("target.id", ASCENDING)
            ], name="target_id")

            logger.debug("Notification collection indexes ensured")

        except PyMongoError as e:
            logger.warning("Failed to create notification indexes", error=str(e))

    async def create(self, candidate: NotificationCandidate) -> Notification:
        """
        Persist a notification built from a candidate.

        Raises:
            ValidationError: If recipient, type or sender id is missing
            StoreError: If the insert fails
        """
        missing = candidate.missing_fields()
        if missing:
            raise_validation_error(
                f"Notification candidate is missing required fields: {', '.join(missing)}",
                field_errors=[{"field": name, "error": "required"} for name in missing],
                error_code=ErrorCode.NOTIFICATION_FIELDS_MISSING
            )

        notification = Notification.from_candidate(candidate)
        document = notification.to_document()
        document["_id"] = ObjectId(notification.id)

        try:
            with performance_context("mongodb_create_notification", recipient=notification.recipient):
                await self._collection.insert_one(document)
        except (PyMongoError, InvalidDocument) as e:
            raise_store_error(
                f"Failed to create notification: {e}",
                collection_name=self._collection_name,
                operation="create"
            )

        database_logger.query_executed(
            database_type="mongodb",
            operation="create_notification",
            collection=self._collection_name,
            result_count=1
        )

        logger.debug(
            "Notification persisted",
            notification_id=notification.id,
            recipient=notification.recipient,
            notification_type=notification.type.value
        )
        return notification

    async def get(self, notification_id: str, user_id: str) -> Optional[Notification]:
        """Get a notification owned by a user."""
        query = {"_id": self._parse_id(notification_id), "recipient": user_id}

        try:
            document = await self._collection.find_one(query)
        except PyMongoError as e:
            raise_store_error(
                f"Failed to load notification: {e}",
                collection_name=self._collection_name,
                operation="get"
            )

        return Notification.from_document(document) if document else None

    async def unread_count(self, user_id: str) -> int:
        """
        Count a user's unread notifications.

        Storage failures are logged and reported as zero.
        """
        try:
            count = await self._collection.count_documents({"recipient": user_id, "read": False})
        except PyMongoError as e:
            logger.warning("Unread count unavailable, reporting zero", user_id=user_id, error=str(e))
            return 0

        return max(int(count), 0)

    async def mark_read(self, notification_id: str, user_id: str) -> Optional[Notification]:
        """
        Mark a notification read.

        Idempotent: an already-read record is returned unchanged.

        Returns:
            The updated record, or None if the user owns no such notification
        """
        query = {"_id": self._parse_id(notification_id), "recipient": user_id}

        try:
            with performance_context("mongodb_mark_read", notification_id=notification_id):
                document = await self._collection.find_one_and_update(
                    query,
                    {"$set": {"read": True}},
                    return_document=ReturnDocument.AFTER
                )
        except PyMongoError as e:
            raise_store_error(
                f"Failed to mark notification read: {e}",
                collection_name=self._collection_name,
                operation="mark_read"
            )

        if document is None:
            return None
        return Notification.from_document(document)

    async def mark_all_read(self, user_id: str) -> int:
        """Mark every unread notification of a user read."""
        try:
            result = await self._collection.update_many(
                {"recipient": user_id, "read": False},
                {"$set": {"read": True}}
            )
        except PyMongoError as e:
            raise_store_error(
                f"Failed to mark notifications read: {e}",
                collection_name=self._collection_name,
                operation="mark_all_read"
            )

        database_logger.query_executed(
            database_type="mongodb",
            operation="mark_all_read",
            collection=self._collection_name,
            result_count=result.modified_count
        )
        return result.modified_count

    async def list_unread(self, user_id: str, limit: Optional[int] = None) -> List[Notification]:
        """List a user's unread notifications, newest first."""
        query = {"recipient": user_id, "read": False}
        return await self._find(query, skip=0, limit=limit or 0, operation="list_unread")

    async def list_for_user(
        self,
        user_id: str,
        page: int = 1,
        limit: Optional[int] = None
    ) -> Tuple[List[Notification], int]:
        """
        List a user's notifications, newest first.

        Returns:
            (page of notifications, total matching)
        """
        return await self._paginate({"recipient": user_id}, page, limit, "list_for_user")

    async def list_by_type(
        self,
        notification_type: str,
        user_id: str,
        page: int = 1,
        limit: Optional[int] = None
    ) -> Tuple[List[Notification], int]:
        """
        List a user's notifications of one type, newest first.

        The type ``"all"`` lists every notification.
        """
        query: Dict[str, Any] = {"recipient": user_id}

        if notification_type and notification_type != "all":
            parsed = NotificationType.parse(notification_type)
            if parsed is None:
                raise_validation_error(
                    f"Unknown notification type: {notification_type}",
                    field_errors=[{"field": "type", "value": notification_type, "error": "unknown type"}]
                )
            query["type"] = parsed.value

        return await self._paginate(query, page, limit, "list_by_type")

    async def delete(self, notification_id: str, user_id: str) -> bool:
        """Delete one notification owned by a user."""
        query = {"_id": self._parse_id(notification_id), "recipient": user_id}

        try:
            result = await self._collection.delete_one(query)
        except PyMongoError as e:
            raise_store_error(
                f"Failed to delete notification: {e}",
                collection_name=self._collection_name,
                operation="delete"
            )
        return result.deleted_count > 0

    async def clear_all(self, user_id: str) -> int:
        """Delete every notification addressed to a user."""
        return await self._delete_many({"recipient": user_id}, "clear_all")

    async def delete_for_target(self, target_id: str) -> int:
        """Delete notifications about removed content, including comments under a removed review."""
        query = {"$or": [{"target.id": target_id}, {"target.review_id": target_id}]}
        return await self._delete_many(query, "delete_for_target")

    async def delete_for_user(self, user_id: str) -> int:
        """Delete notifications a removed user received or caused."""
        query = {"$or": [{"recipient": user_id}, {"sender.id": user_id}]}
        return await self._delete_many(query, "delete_for_user")

    async def summary(self) -> Dict[str, Any]:
        """Totals across every recipient, for the admin view."""
        try:
            with performance_context("mongodb_notification_summary"):
                total = await self._collection.count_documents({})
                unread = await self._collection.count_documents({"read": False})
                cursor = self._collection.aggregate([
                    {"$group": {"_id": "$type", "count": {"$sum": 1}}}
                ])
                groups = await cursor.to_list(length=None)
        except PyMongoError as e:
            raise_store_error(
                f"Failed to summarise notifications: {e}",
                collection_name=self._collection_name,
                operation="summary"
            )

        return {
            "total": total,
            "unread": unread,
            "type_counts": {group["_id"]: group["count"] for group in groups},
        }

    def _parse_id(self, notification_id: str) -> ObjectId:
        try:
            return ObjectId(notification_id)
        except (InvalidId, TypeError):
            raise_invalid_identifier("notification_id", notification_id)

    def _page_bounds(self, page: int, limit: Optional[int]) -> Tuple[int, int]:
        if limit is None:
            limit = self.settings.default_page_size
        if page < 1 or limit < 1:
            raise ValidationError(
                "Page and limit must be positive",
                field_errors=[
                    {"field": "page", "value": page},
                    {"field": "limit", "value": limit}
                ],
                error_code=ErrorCode.INVALID_PAGINATION
            )
        return page, min(limit, self.settings.max_page_size)

    async def _paginate(
        self,
        query: Dict[str, Any],
        page: int,
        limit: Optional[int],
        operation: str
    ) -> Tuple[List[Notification], int]:
        page, limit = self._page_bounds(page, limit)

        items = await self._find(query, skip=(page - 1) * limit, limit=limit, operation=operation)
        try:
            total = await self._collection.count_documents(query)
        except PyMongoError as e:
            raise_store_error(
                f"Failed to count notifications: {e}",
                collection_name=self._collection_name,
                operation=operation
            )
        return items, total

    async def _find(
        self,
        query: Dict[str, Any],
        skip: int,
        limit: int,
        operation: str
    ) -> List[Notification]:
        try:
            with performance_context(f"mongodb_{operation}"):
                cursor = self._collection.find(query).sort(NEWEST_FIRST).skip(skip)
                if limit:
                    cursor = cursor.limit(limit)
                documents = await cursor.to_list(length=limit or None)
        except PyMongoError as e:
            raise_store_error(
                f"Failed to list notifications: {e}",
                collection_name=self._collection_name,
                operation=operation
            )

        database_logger.query_executed(
            database_type="mongodb",
            operation=operation,
            collection=self._collection_name,
            result_count=len(documents)
        )
        return [Notification.from_document(document) for document in documents]

    async def _delete_many(self, query: Dict[str, Any], operation: str) -> int:
        try:
            result = await self._collection.delete_many(query)
        except PyMongoError as e:
            raise_store_error(
                f"Failed to delete notifications: {e}",
                collection_name=self._collection_name,
                operation=operation
            )

        logger.info(
            "Notifications deleted",
            operation=operation,
            deleted_count=result.deleted_count
        )
        return result.deleted_count
