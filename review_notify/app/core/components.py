"""
Explicitly constructed container for the real-time notification components.

The application lifespan owns exactly one instance and stores it on
``app.state.components``; routes reach it through the accessors in
``app/api/deps.py``.
"""

from typing import Any, Dict, Optional

from motor.motor_asyncio import AsyncIOMotorCollection, AsyncIOMotorDatabase

from .connection_registry import ConnectionRegistry
from .database import MongoDBManager
from .heartbeat_monitor import HeartbeatMonitor
from ..repositories.mongodb.device_token_repository import DeviceTokenRepository
from ..repositories.mongodb.notification_repository import NotificationRepository
from ..repositories.mongodb.user_repository import MongoUserDirectory, UserDirectory
from ..services.notification_service import NotificationDispatcher
from ..utils.logging import get_logger
from review_notify.config.settings import Settings, get_settings

logger = get_logger(__name__)


class NotificationComponents:
    """Registry, heartbeat, stores, user directory and dispatcher wired together."""

    def __init__(
        self,
        notifications: AsyncIOMotorCollection,
        device_tokens: AsyncIOMotorCollection,
        user_directory: Optional[UserDirectory] = None,
        settings: Optional[Settings] = None,
        mongodb: Optional[MongoDBManager] = None
    ):
        """
        Build the components from their backing collections.

        Args:
            notifications: Collection for notification records
            device_tokens: Collection for device tokens
            user_directory: Followers/display lookups (optional)
            settings: Application settings
            mongodb: Manager owning the client, disconnected on stop
        """
        self.settings = settings or get_settings()
        self.mongodb = mongodb

        self.registry = ConnectionRegistry()
        self.heartbeat = HeartbeatMonitor(
            self.registry,
            interval_seconds=self.settings.realtime.heartbeat_interval_seconds,
            probe_timeout_seconds=self.settings.realtime.send_timeout_seconds
        )
        self.notification_store = NotificationRepository(notifications, self.settings.notifications)
        self.device_token_store = DeviceTokenRepository(device_tokens)
        self.user_directory = user_directory
        self.dispatcher = NotificationDispatcher(
            self.registry,
            self.notification_store,
            user_directory=user_directory,
            send_timeout_seconds=self.settings.realtime.send_timeout_seconds,
            settings=self.settings.notifications
        )
        self._started = False

    @classmethod
    def from_database(
        cls,
        database: AsyncIOMotorDatabase,
        settings: Optional[Settings] = None,
        mongodb: Optional[MongoDBManager] = None
    ) -> "NotificationComponents":
        """Build the components from a motor database using the configured collection names."""
        settings = settings or get_settings()
        return cls(
            notifications=database[settings.database.notifications_collection],
            device_tokens=database[settings.database.device_tokens_collection],
            user_directory=MongoUserDirectory(database[settings.database.users_collection]),
            settings=settings,
            mongodb=mongodb
        )

    @property
    def is_started(self) -> bool:
        return self._started

    async def start(self) -> None:
        """Ensure indexes, open the registry and start the heartbeat."""
        if self._started:
            return

        await self.notification_store.ensure_indexes()
        await self.device_token_store.ensure_indexes()
        await self.registry.start()
        await self.heartbeat.start()
        self._started = True

        logger.info("Notification components started")

    async def stop(self) -> None:
        """Stop the heartbeat, then close every live connection."""
        if not self._started:
            return

        await self.heartbeat.stop()
        await self.registry.stop()
        self._started = False

        logger.info("Notification components stopped")

    async def health(self) -> Dict[str, Any]:
        database = await self.mongodb.health_check() if self.mongodb else {"status": "not_configured"}
        return {
            "mongodb": database,
            "registry": self.registry.get_stats(),
            "heartbeat": self.heartbeat.get_stats(),
            "dispatcher": self.dispatcher.get_stats(),
        }
