"""
Read-only access to user profiles.

User profiles belong to another part of the application. The notification
layer only needs three things from them: who follows a user, what a user
looks like (display name and avatar) at the moment a notification is
created, and whether a user id exists at all.
"""

from typing import Any, Dict, Optional, Protocol, Set

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorCollection
from pymongo.errors import PyMongoError

from review_notify.app.core.exceptions import raise_store_error
from review_notify.app.models.domain.notification import UserDisplaySnapshot
from review_notify.app.utils.logging import database_logger, get_logger

logger = get_logger(__name__)


class UserDirectory(Protocol):
    """Collaborator interface the dispatcher and ingress depend on."""

    async def followers(self, user_id: str) -> Set[str]:
        ...

    async def display_snapshot(self, user_id: str) -> Optional[UserDisplaySnapshot]:
        ...

    async def exists(self, user_id: str) -> bool:
        ...


def user_id_query(user_id: str) -> Dict[str, Any]:
    """Match a user by ObjectId when the id parses as one, otherwise by the raw string."""
    try:
        return {"_id": ObjectId(user_id)}
    except (InvalidId, TypeError):
        return {"_id": user_id}


class MongoUserDirectory:
    """UserDirectory backed by the application's users collection."""

    def __init__(self, collection: AsyncIOMotorCollection):
        self._collection = collection
        self._collection_name = getattr(collection, "name", "users")

    async def followers(self, user_id: str) -> Set[str]:
        """
        Ids of the users following ``user_id``.

        Unknown users have no followers.

        Raises:
            StoreError: If the lookup fails
        """
        document = await self._find_one(user_id, {"followers": 1}, "followers")
        if not document:
            return set()

        followers = {str(follower) for follower in document.get("followers") or [] if follower}

        database_logger.query_executed(
            database_type="mongodb",
            operation="followers",
            collection=self._collection_name,
            result_count=len(followers)
        )
        return followers

    async def display_snapshot(self, user_id: str) -> Optional[UserDisplaySnapshot]:
        """Display name and avatar of a user, or None if the user is unknown."""
        document = await self._find_one(
            user_id, {"displayName": 1, "profileImage": 1}, "display_snapshot"
        )
        if not document:
            return None

        return UserDisplaySnapshot(
            user_id=user_id,
            display_name=document.get("displayName"),
            avatar_ref=document.get("profileImage"),
        )

    async def exists(self, user_id: str) -> bool:
        document = await self._find_one(user_id, {"_id": 1}, "exists")
        return document is not None

    async def _find_one(
        self,
        user_id: str,
        projection: Dict[str, int],
        operation: str
    ) -> Optional[Dict[str, Any]]:
        try:
            return await self._collection.find_one(user_id_query(user_id), projection)
        except PyMongoError as e:
            raise_store_error(
                f"User lookup failed: {e}",
                collection_name=self._collection_name,
                operation=operation
            )
