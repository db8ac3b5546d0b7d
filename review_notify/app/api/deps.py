"""
Dependency injection module for API routes.

Components are created by the application lifespan and stored on
``app.state.components``. These accessors read them from the current
request or WebSocket so routes never reach for module-level state.
"""

from typing import Optional

from fastapi import Depends, Header
from starlette.requests import HTTPConnection

from ..core.components import NotificationComponents
from ..core.exceptions import ErrorCode, LookupFailure, StoreError
from ..repositories.mongodb.device_token_repository import DeviceTokenRepository
from ..repositories.mongodb.notification_repository import NotificationRepository
from ..services.notification_service import NotificationDispatcher
from ..utils.logging import get_logger
from review_notify.config.settings import Settings

logger = get_logger(__name__)


def get_components(connection: HTTPConnection) -> NotificationComponents:
    """
    Get the running notification components (FastAPI dependency).

    Works for both HTTP requests and WebSocket connections.

    Raises:
        StoreError: If the application has not finished starting
    """
    components = getattr(connection.app.state, "components", None)
    if components is None:
        raise StoreError(
            "Notification components are not initialized",
            error_code=ErrorCode.STORE_UNAVAILABLE,
            operation="get_components"
        )
    return components


def get_app_settings(components: NotificationComponents = Depends(get_components)) -> Settings:
    return components.settings


def get_dispatcher(components: NotificationComponents = Depends(get_components)) -> NotificationDispatcher:
    return components.dispatcher


def get_notification_store(
    components: NotificationComponents = Depends(get_components)
) -> NotificationRepository:
    return components.notification_store


def get_device_token_store(
    components: NotificationComponents = Depends(get_components)
) -> DeviceTokenRepository:
    return components.device_token_store


async def get_current_user_id(
    user_id: Optional[str] = Header(default=None, alias="X-User-ID")
) -> str:
    """
    Identity of the caller, resolved upstream and forwarded in ``X-User-ID``.

    Raises:
        LookupFailure: If the header is missing or blank (401)
    """
    if not user_id or not user_id.strip():
        raise LookupFailure(
            "Missing X-User-ID header",
            error_code=ErrorCode.LOOKUP_MISSING_IDENTITY
        )
    return user_id.strip()
