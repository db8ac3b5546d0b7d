"""Shared fixtures for the notification backend tests."""

import pytest
from fastapi.testclient import TestClient

from review_notify.app.core.components import NotificationComponents
from review_notify.app.core.connection_registry import ConnectionRegistry
from review_notify.app.repositories.mongodb.device_token_repository import DeviceTokenRepository
from review_notify.app.repositories.mongodb.notification_repository import NotificationRepository
from review_notify.app.services.notification_service import NotificationDispatcher
from review_notify.config.settings import (
    NotificationSettings,
    RealtimeSettings,
    Settings
)
from review_notify.main import create_application
from tests.doubles import FakeUserDirectory, InMemoryCollection


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        environment="testing",
        realtime=RealtimeSettings(heartbeat_interval_seconds=3600, send_timeout_seconds=0.2),
        notifications=NotificationSettings(default_page_size=20, max_page_size=50),
    )


@pytest.fixture
def notifications_collection() -> InMemoryCollection:
    return InMemoryCollection("notifications")


@pytest.fixture
def device_tokens_collection() -> InMemoryCollection:
    return InMemoryCollection("devicetokens")


@pytest.fixture
def user_directory() -> FakeUserDirectory:
    return FakeUserDirectory(
        followers={"author": {"fan1", "fan2", "author"}},
        profiles={
            "alice": {"displayName": "Alice", "profileImage": "avatars/alice.jpg"},
            "bob": {"displayName": "Bob", "profileImage": "avatars/bob.jpg"},
            "author": {"displayName": "Author"},
        }
    )


@pytest.fixture
def store(notifications_collection, settings) -> NotificationRepository:
    return NotificationRepository(notifications_collection, settings.notifications)


@pytest.fixture
def token_store(device_tokens_collection) -> DeviceTokenRepository:
    return DeviceTokenRepository(device_tokens_collection)


@pytest.fixture
async def registry():
    registry = ConnectionRegistry()
    await registry.start()
    yield registry
    await registry.stop()


@pytest.fixture
def dispatcher(registry, store, user_directory, settings) -> NotificationDispatcher:
    return NotificationDispatcher(
        registry,
        store,
        user_directory=user_directory,
        send_timeout_seconds=settings.realtime.send_timeout_seconds,
        settings=settings.notifications
    )


@pytest.fixture
def components(notifications_collection, device_tokens_collection, user_directory, settings):
    return NotificationComponents(
        notifications=notifications_collection,
        device_tokens=device_tokens_collection,
        user_directory=user_directory,
        settings=settings
    )


@pytest.fixture
def client(components, settings):
    app = create_application(settings=settings, components=components)
    with TestClient(app) as test_client:
        yield test_client
