"""Tests for the user directory, the MongoDB manager and the component container."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from bson import ObjectId
from pymongo.errors import ServerSelectionTimeoutError

from review_notify.app.core.components import NotificationComponents
from review_notify.app.core.database import MongoDBManager
from review_notify.app.core.exceptions import ErrorCode, StoreError
from review_notify.app.repositories.mongodb.user_repository import MongoUserDirectory, user_id_query
from tests.doubles import FailingCollection, FakeTransport, InMemoryCollection


class TestMongoUserDirectory:
    """Test suite for the users collection reader."""

    def setup_method(self):
        """Set up test fixtures before each test method."""
        self.author_id = ObjectId()
        self.fan_id = ObjectId()
        self.collection = InMemoryCollection("users", [
            {
                "_id": self.author_id,
                "displayName": "Dana",
                "profileImage": "avatars/dana.jpg",
                "followers": [self.fan_id, "legacy_fan", None],
            },
            {"_id": "string_user", "displayName": "Legacy"},
        ])
        self.directory = MongoUserDirectory(self.collection)

    def test_user_id_query(self):
        assert user_id_query(str(self.author_id)) == {"_id": self.author_id}
        assert user_id_query("string_user") == {"_id": "string_user"}

    async def test_followers(self):
        followers = await self.directory.followers(str(self.author_id))

        assert followers == {str(self.fan_id), "legacy_fan"}

    async def test_followers_of_unknown_user(self):
        assert await self.directory.followers(str(ObjectId())) == set()

    async def test_display_snapshot(self):
        snapshot = await self.directory.display_snapshot(str(self.author_id))

        assert snapshot.display_name == "Dana"
        assert snapshot.avatar_ref == "avatars/dana.jpg"
        assert (await self.directory.display_snapshot("string_user")).avatar_ref is None
        assert await self.directory.display_snapshot("nobody") is None

    async def test_exists(self):
        assert await self.directory.exists("string_user")
        assert not await self.directory.exists("nobody")

    async def test_lookup_failure_raises_store_error(self):
        directory = MongoUserDirectory(FailingCollection())

        with pytest.raises(StoreError):
            await directory.followers("anyone")


class TestMongoDBManager:
    """Test suite for MongoDB connection management."""

    async def test_health_when_disconnected(self):
        manager = MongoDBManager()

        assert (await manager.health_check())["status"] == "disconnected"

    async def test_health_when_connected(self):
        manager = MongoDBManager()
        manager.client = MagicMock()
        manager.client.admin.command = AsyncMock(return_value={"ok": 1})
        manager.database = MagicMock()
        manager.database.command = AsyncMock(return_value={"collections": 3, "indexes": 7})
        manager.is_connected = True

        health = await manager.health_check()

        assert health["status"] == "healthy"
        assert health["collections"] == 3

    async def test_health_when_ping_fails(self):
        manager = MongoDBManager()
        manager.client = MagicMock()
        manager.client.admin.command = AsyncMock(side_effect=ServerSelectionTimeoutError("down"))
        manager.is_connected = True

        assert (await manager.health_check())["status"] == "unhealthy"

    def test_get_database_requires_connection(self):
        with pytest.raises(StoreError) as exc_info:
            MongoDBManager().get_database()

        assert exc_info.value.error_code == ErrorCode.STORE_UNAVAILABLE


class TestNotificationComponents:
    """Test suite for the component container lifecycle."""

    async def test_start_and_stop(self, components, notifications_collection):
        await components.start()
        transport = FakeTransport()
        await components.registry.register("alice", transport)

        assert components.is_started
        assert components.heartbeat.is_running
        assert notifications_collection.indexes

        await components.stop()

        assert not components.is_started
        assert not components.heartbeat.is_running
        assert transport.close_code == 1001

    async def test_health_reports_database(self, components):
        components.mongodb = MagicMock()
        components.mongodb.health_check = AsyncMock(return_value={"status": "healthy"})

        health = await components.health()

        assert health["mongodb"] == {"status": "healthy"}
        assert health["registry"]["connections"] == 0
        assert set(health) == {"mongodb", "registry", "heartbeat", "dispatcher"}

    def test_from_database_uses_configured_collections(self, settings):
        database = MagicMock()
        database.__getitem__.side_effect = lambda name: InMemoryCollection(name)

        components = NotificationComponents.from_database(database, settings)

        assert components.notification_store._collection.name == "notifications"
        assert components.device_token_store._collection.name == "devicetokens"
        assert isinstance(components.user_directory, MongoUserDirectory)
