"""
Notification REST API routes.

The caller's identity is resolved upstream and arrives in the ``X-User-ID``
header. Every route is scoped to that user except the admin summary.
Mutations go through the dispatcher so the caller's live connections receive
the recomputed unread count.
"""

from typing import List, Optional

from fastapi import APIRouter, Body, Depends, Path, Query, status

from ...core.exceptions import (
    ErrorCode,
    FeatureDisabledError,
    StoreError,
    raise_validation_error
)
from ...models.api.notification_schemas import (
    ClearAllResponse,
    CreateTestNotificationRequest,
    MarkAllReadResponse,
    MessageResponse,
    NotificationListResponse,
    NotificationResponse,
    NotificationSummaryResponse,
    NotificationTypeOption,
    UnreadCountResponse,
    build_pagination
)
from ...models.domain.notification import (
    FILTERABLE_TYPES,
    NotificationCandidate,
    NotificationType,
    SenderSnapshot,
    TargetRef,
    TargetType
)
from ...repositories.mongodb.notification_repository import NotificationRepository
from ...services.notification_service import NotificationDispatcher
from ...utils.logging import get_logger
from ..deps import (
    get_app_settings,
    get_current_user_id,
    get_dispatcher,
    get_notification_store
)
from review_notify.config.settings import Settings

logger = get_logger(__name__)
router = APIRouter()


def _effective_limit(limit: Optional[int], settings: Settings) -> int:
    if limit is None:
        limit = settings.notifications.default_page_size
    return min(limit, settings.notifications.max_page_size)


@router.get("/", response_model=NotificationListResponse)
async def list_notifications(
    page: int = Query(1, ge=1, description="Page number"),
    limit: Optional[int] = Query(None, ge=1, description="Page size"),
    user_id: str = Depends(get_current_user_id),
    store: NotificationRepository = Depends(get_notification_store),
    settings: Settings = Depends(get_app_settings)
):
    """List the caller's notifications, newest first."""
    limit = _effective_limit(limit, settings)
    notifications, total = await store.list_for_user(user_id, page=page, limit=limit)
    unread = await store.unread_count(user_id)

    return NotificationListResponse(
        notifications=[NotificationResponse.from_domain(n) for n in notifications],
        unread_count=unread,
        pagination=build_pagination(total, page, limit)
    )


@router.get("/unread-count", response_model=UnreadCountResponse)
async def get_unread_count(
    user_id: str = Depends(get_current_user_id),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher)
):
    return UnreadCountResponse(count=await dispatcher.unread_count(user_id))


@router.get("/unread", response_model=List[NotificationResponse])
async def list_unread_notifications(
    limit: Optional[int] = Query(None, ge=1, description="Maximum records"),
    user_id: str = Depends(get_current_user_id),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher)
):
    notifications = await dispatcher.list_unread(user_id, limit=limit)
    return [NotificationResponse.from_domain(n) for n in notifications]


@router.get("/types", response_model=List[NotificationTypeOption])
async def list_notification_types():
    """Types the inbox can be filtered by."""
    return [NotificationTypeOption(**option) for option in FILTERABLE_TYPES]


@router.get("/filtered", response_model=NotificationListResponse)
async def list_filtered_notifications(
    type: str = Query("all", description="Notification type, or 'all'"),
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    user_id: str = Depends(get_current_user_id),
    store: NotificationRepository = Depends(get_notification_store),
    settings: Settings = Depends(get_app_settings)
):
    """List the caller's notifications of one type."""
    limit = _effective_limit(limit, settings)
    notifications, total = await store.list_by_type(type, user_id, page=page, limit=limit)
    unread = await store.unread_count(user_id)

    return NotificationListResponse(
        notifications=[NotificationResponse.from_domain(n) for n in notifications],
        unread_count=unread,
        pagination=build_pagination(total, page, limit)
    )


@router.get("/admin/summary", response_model=NotificationSummaryResponse)
async def get_notification_summary(
    user_id: str = Depends(get_current_user_id),
    store: NotificationRepository = Depends(get_notification_store)
):
    """Totals and per-type counts across all recipients."""
    summary = await store.summary()
    logger.info("Notification summary requested", user_id=user_id, total=summary["total"])
    return NotificationSummaryResponse(**summary)


@router.put("/mark-all-read", response_model=MarkAllReadResponse)
async def mark_all_notifications_read(
    user_id: str = Depends(get_current_user_id),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher)
):
    modified = await dispatcher.mark_all_read_and_sync(user_id)
    return MarkAllReadResponse(message="All notifications marked as read", modified_count=modified)


@router.delete("/clear-all", response_model=ClearAllResponse)
async def clear_all_notifications(
    user_id: str = Depends(get_current_user_id),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher)
):
    deleted = await dispatcher.clear_all_and_sync(user_id)
    return ClearAllResponse(message="All notifications cleared", deleted_count=deleted)


@router.put("/{notification_id}/read", response_model=NotificationResponse)
async def mark_notification_read(
    notification_id: str = Path(..., description="Notification identifier"),
    user_id: str = Depends(get_current_user_id),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher)
):
    """Mark one notification read and push the new unread count."""
    notification = await dispatcher.mark_read_and_sync(notification_id, user_id)
    if notification is None:
        raise StoreError(
            f"Notification {notification_id} not found",
            error_code=ErrorCode.STORE_RECORD_NOT_FOUND,
            operation="mark_read"
        )
    return NotificationResponse.from_domain(notification)


@router.delete("/{notification_id}", response_model=MessageResponse)
async def delete_notification(
    notification_id: str = Path(..., description="Notification identifier"),
    user_id: str = Depends(get_current_user_id),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher)
):
    if not await dispatcher.delete_and_sync(notification_id, user_id):
        raise StoreError(
            f"Notification {notification_id} not found",
            error_code=ErrorCode.STORE_RECORD_NOT_FOUND,
            operation="delete"
        )
    return MessageResponse(message="Notification deleted")


@router.post("/test", response_model=NotificationResponse, status_code=status.HTTP_201_CREATED)
async def create_test_notification(
    request: Optional[CreateTestNotificationRequest] = Body(None),
    user_id: str = Depends(get_current_user_id),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    settings: Settings = Depends(get_app_settings)
):
    """Create and push a test notification (disabled in production)."""
    if not settings.test_notifications_enabled:
        raise FeatureDisabledError(
            "Test notifications are disabled",
            feature="test_notifications"
        )

    request = request or CreateTestNotificationRequest()
    recipient = request.recipient_id or user_id
    if not recipient.strip():
        raise_validation_error(
            "Recipient must not be blank",
            field_errors=[{"field": "recipient_id", "error": "blank"}]
        )

    notification = await dispatcher.notify(
        NotificationCandidate(
            recipient=recipient,
            type=NotificationType.TEST,
            sender=SenderSnapshot(id=user_id),
            target=TargetRef(
                content_type=TargetType.TEST,
                preview=request.message or "This is a test notification"
            ),
            metadata={"test": True}
        ),
        allow_self=True
    )
    if notification is None:
        raise StoreError(
            "Test notification could not be created",
            error_code=ErrorCode.STORE_UNAVAILABLE,
            operation="create"
        )
    return NotificationResponse.from_domain(notification)
