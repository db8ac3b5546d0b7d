"""
MongoDB repository for push device tokens.

Tokens are globally unique. Registering a token that already exists moves
it to the new owner in a single atomic upsert, so a token never belongs to
two users at once.
"""

from datetime import datetime, timezone
from typing import Any, List, Optional

from motor.motor_asyncio import AsyncIOMotorCollection
from pymongo import ASCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError

from review_notify.app.core.exceptions import (
    ErrorCode,
    raise_store_error,
    raise_validation_error
)
from review_notify.app.models.domain.device_token import DevicePlatform, DeviceToken, as_utc
from review_notify.app.utils.logging import (
    database_logger,
    get_logger,
    performance_context
)

logger = get_logger(__name__)


class DeviceTokenRepository:
    """MongoDB repository for device token lifecycle bookkeeping."""

    def __init__(self, collection: AsyncIOMotorCollection):
        self._collection = collection
        self._collection_name = getattr(collection, "name", "devicetokens")

    async def ensure_indexes(self) -> None:
        """Create the unique token index and the per-user lookup index."""
        try:
            await self._collection.create_index([
                ("token", ASCENDING)
            ], unique=True, name="token_unique")

            await self._collection.create_index([
                ("user_id", ASCENDING),
                ("platform", ASCENDING)
            ], name="user_platform")

            logger.debug("Device token collection indexes ensured")

        except PyMongoError as e:
            logger.warning("Failed to create device token indexes", error=str(e))

    async def upsert(self, user_id: str, token: str, platform: Any) -> DeviceToken:
        """
        Register a token for a user, moving it from any previous owner.

        Raises:
            ValidationError: On an empty token/user id or an unsupported platform
            StoreError: If the upsert fails
        """
        token = (token or "").strip()
        if not token or not user_id:
            raise_validation_error(
                "Device token and user id are required",
                field_errors=[
                    {"field": name, "error": "required"}
                    for name, value in (("token", token), ("user_id", user_id)) if not value
                ]
            )

        parsed_platform = DevicePlatform.parse(platform)
        if parsed_platform is None:
            raise_validation_error(
                f"Unsupported device platform: {platform!r}",
                field_errors=[{"field": "platform", "value": str(platform), "error": "must be ios or android"}],
                error_code=ErrorCode.UNSUPPORTED_PLATFORM
            )

        now = datetime.now(timezone.utc)
        update = {
            "$set": {"user_id": user_id, "platform": parsed_platform.value, "last_used": now},
            "$setOnInsert": {"created_at": now},
        }

        try:
            with performance_context("mongodb_upsert_device_token", user_id=user_id):
                try:
                    previous = await self._collection.find_one_and_update(
                        {"token": token}, update, upsert=True, return_document=ReturnDocument.BEFORE
                    )
                except DuplicateKeyError:
                    # Lost an insert race for the same token; the retry matches the winner
                    previous = await self._collection.find_one_and_update(
                        {"token": token}, update, upsert=True, return_document=ReturnDocument.BEFORE
                    )
        except PyMongoError as e:
            raise_store_error(
                f"Failed to register device token: {e}",
                collection_name=self._collection_name,
                operation="upsert"
            )

        if previous is not None and previous.get("user_id") != user_id:
            logger.info(
                "Device token moved to new owner",
                previous_user_id=previous.get("user_id"),
                user_id=user_id,
                platform=parsed_platform.value
            )

        database_logger.query_executed(
            database_type="mongodb",
            operation="upsert_device_token",
            collection=self._collection_name,
            result_count=1
        )

        return DeviceToken(
            token=token,
            user_id=user_id,
            platform=parsed_platform,
            last_used=now,
            created_at=as_utc(previous.get("created_at")) if previous else now,
        )

    async def remove(self, token: str) -> bool:
        """Delete a token. Returns False if it was not registered."""
        try:
            result = await self._collection.delete_one({"token": token})
        except PyMongoError as e:
            raise_store_error(
                f"Failed to remove device token: {e}",
                collection_name=self._collection_name,
                operation="remove"
            )
        return result.deleted_count > 0

    async def touch(self, token: str) -> bool:
        """Refresh a token's last-used time. Returns False if it is unknown."""
        try:
            result = await self._collection.update_one(
                {"token": token},
                {"$set": {"last_used": datetime.now(timezone.utc)}}
            )
        except PyMongoError as e:
            raise_store_error(
                f"Failed to refresh device token: {e}",
                collection_name=self._collection_name,
                operation="touch"
            )
        return result.matched_count > 0

    async def tokens_for_user(self, user_id: str, platform: Optional[Any] = None) -> List[DeviceToken]:
        """List a user's tokens, optionally for one platform."""
        query = {"user_id": user_id}
        if platform is not None:
            parsed_platform = DevicePlatform.parse(platform)
            if parsed_platform is None:
                raise_validation_error(
                    f"Unsupported device platform: {platform!r}",
                    error_code=ErrorCode.UNSUPPORTED_PLATFORM
                )
            query["platform"] = parsed_platform.value

        try:
            documents = await self._collection.find(query).to_list(length=None)
        except PyMongoError as e:
            raise_store_error(
                f"Failed to list device tokens: {e}",
                collection_name=self._collection_name,
                operation="tokens_for_user"
            )
        return [DeviceToken.from_document(document) for document in documents]

    async def remove_for_user(self, user_id: str) -> int:
        """Delete every token a user owns."""
        try:
            result = await self._collection.delete_many({"user_id": user_id})
        except PyMongoError as e:
            raise_store_error(
                f"Failed to remove device tokens: {e}",
                collection_name=self._collection_name,
                operation="remove_for_user"
            )
        return result.deleted_count
