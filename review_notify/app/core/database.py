"""
MongoDB connection management for the review notification backend.

This module provides:
- Async MongoDB connection management through motor
- Database health checking with ping latency and collection stats
- Graceful shutdown and error handling
"""

import asyncio
import time
from typing import Any, Dict, Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo.errors import ConnectionFailure, PyMongoError, ServerSelectionTimeoutError

from .exceptions import ErrorCode, raise_store_error
from ..utils.logging import (
    database_logger,
    get_logger,
    performance_context
)
from review_notify.config.settings import DatabaseSettings, get_settings

logger = get_logger(__name__)


class MongoDBManager:
    """
    MongoDB connection and lifecycle management.

    Owns the motor client shared by the notification store, the device
    token store and the user directory.
    """

    def __init__(self, settings: Optional[DatabaseSettings] = None):
        """Initialize MongoDB manager."""
        self.settings = settings or get_settings().database
        self.client: Optional[AsyncIOMotorClient] = None
        self.database: Optional[AsyncIOMotorDatabase] = None
        self.is_connected: bool = False
        self._connection_lock = asyncio.Lock()

    async def connect(self) -> None:
        """
        Establish connection to MongoDB.

        Raises:
            StoreError: If connection fails
        """
        if self.is_connected:
            return

        async with self._connection_lock:
            if self.is_connected:
                return

            try:
                with performance_context("mongodb_connection"):
                    self.client = AsyncIOMotorClient(
                        self.settings.mongodb_url,
                        serverSelectionTimeoutMS=self.settings.server_selection_timeout_ms,
                        connectTimeoutMS=self.settings.server_selection_timeout_ms,
                        maxPoolSize=self.settings.max_pool_size,
                        minPoolSize=self.settings.min_pool_size,
                        retryWrites=True,
                        retryReads=True
                    )

                    self.database = self.client[self.settings.mongodb_database]

                    # Test connection
                    await self.client.admin.command('ping')

                    self.is_connected = True

                    database_logger.connection_established(
                        database_type="mongodb",
                        database_name=self.settings.mongodb_database
                    )

                    logger.info(
                        "MongoDB connection established",
                        database=self.settings.mongodb_database,
                        url=self.settings.mongodb_url.split('@')[-1]  # Hide credentials
                    )

            except (ConnectionFailure, ServerSelectionTimeoutError) as e:
                database_logger.connection_failed("mongodb", str(e))
                raise_store_error(
                    f"Failed to connect to MongoDB: {e}",
                    operation="connect",
                    error_code=ErrorCode.STORE_UNAVAILABLE
                )
            except PyMongoError as e:
                database_logger.connection_failed("mongodb", str(e))
                raise_store_error(
                    f"Unexpected error connecting to MongoDB: {e}",
                    operation="connect",
                    error_code=ErrorCode.STORE_UNAVAILABLE
                )

    async def disconnect(self) -> None:
        """Close MongoDB connection."""
        if self.client and self.is_connected:
            self.client.close()
            self.is_connected = False
            logger.info("MongoDB connection closed")

    async def health_check(self) -> Dict[str, Any]:
        """
        Perform MongoDB health check.

        Returns:
            Health status information
        """
        if not self.is_connected or self.client is None:
            return {
                "status": "disconnected",
                "error": "Not connected to MongoDB"
            }

        try:
            start_time = time.time()
            await self.client.admin.command('ping')
            latency = (time.time() - start_time) * 1000

            stats = await self.database.command("dbStats")

            return {
                "status": "healthy",
                "latency_ms": round(latency, 2),
                "collections": stats.get("collections", 0),
                "indexes": stats.get("indexes", 0)
            }
        except PyMongoError as e:
            logger.warning("MongoDB health check failed", error=str(e))
            return {
                "status": "unhealthy",
                "error": str(e)
            }

    def get_database(self) -> AsyncIOMotorDatabase:
        """
        Get the MongoDB database instance.

        Raises:
            StoreError: If not connected
        """
        if self.database is None:
            raise_store_error(
                "MongoDB not connected",
                operation="get_database",
                error_code=ErrorCode.STORE_UNAVAILABLE
            )
        return self.database
