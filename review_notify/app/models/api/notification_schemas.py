"""
Pydantic API schemas for the notification REST surface.

This module defines the request/response schemas for:
- Inbox listings, unread counts and filter options
- Mark-read, delete and clear operations
- The admin summary and the test notification endpoint
- Device token registration
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from review_notify.app.models.domain.device_token import DeviceToken
from review_notify.app.models.domain.notification import Notification


class SenderResponse(BaseModel):
    """Sender snapshot as shown to the client."""
    id: Optional[str] = None
    display_name: Optional[str] = None
    avatar_ref: Optional[str] = None


class TargetResponse(BaseModel):
    """Content the notification points at."""
    type: Optional[str] = None
    id: Optional[str] = None
    review_id: Optional[str] = None
    place: Optional[str] = None
    preview: Optional[str] = None
    title: Optional[str] = None


class NotificationResponse(BaseModel):
    """A single notification."""
    id: str = Field(..., description="Notification identifier")
    recipient: str = Field(..., description="User the notification is addressed to")
    type: str = Field(..., description="Notification type")
    sender: SenderResponse
    target: TargetResponse
    read: bool = False
    created_at: datetime
    metadata: Dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": "66f1c2a9e4b0a1b2c3d4e5f6",
                "recipient": "user_42",
                "type": "review_like",
                "sender": {"id": "user_7", "display_name": "Dana", "avatar_ref": "avatars/7.jpg"},
                "target": {"type": "review", "id": "rev_1", "review_id": "rev_1",
                           "place": "Corner Grill", "preview": "Best brisket in town"},
                "read": False,
                "created_at": "2026-10-18T12:00:00+00:00",
                "metadata": {}
            }
        }
    )

    @classmethod
    def from_domain(cls, notification: Notification) -> "NotificationResponse":
        return cls.model_validate(notification.to_dict())


class PaginationInfo(BaseModel):
    """Pagination block of a listing."""
    total: int = Field(..., ge=0)
    page: int = Field(..., ge=1)
    pages: int = Field(..., ge=0)
    limit: int = Field(..., ge=1)


class NotificationListResponse(BaseModel):
    """A page of the caller's notifications."""
    notifications: List[NotificationResponse]
    unread_count: int = Field(..., ge=0)
    pagination: PaginationInfo


class UnreadCountResponse(BaseModel):
    count: int = Field(..., ge=0)


class NotificationTypeOption(BaseModel):
    """A type the inbox can be filtered by."""
    id: str
    label: str


class MarkAllReadResponse(BaseModel):
    message: str
    modified_count: int


class ClearAllResponse(BaseModel):
    message: str
    deleted_count: int


class MessageResponse(BaseModel):
    message: str


class NotificationSummaryResponse(BaseModel):
    """Totals across all recipients."""
    total: int
    unread: int
    type_counts: Dict[str, int] = Field(default_factory=dict)


class CreateTestNotificationRequest(BaseModel):
    """Create a test notification, to the caller unless a recipient is given."""
    recipient_id: Optional[str] = Field(None, description="Recipient; defaults to the caller")
    message: Optional[str] = Field(None, max_length=500, description="Preview text")


class DeviceTokenRequest(BaseModel):
    """Register a push token for a user."""
    user_id: str = Field(..., min_length=1, description="Owning user")
    token: str = Field(..., min_length=1, description="Opaque platform push token")
    platform: str = Field(..., description="ios or android")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {"user_id": "user_42", "token": "fcm:abc123", "platform": "android"}
        }
    )


class DeviceTokenResponse(BaseModel):
    token: str
    user_id: str
    platform: str
    last_used: datetime
    created_at: datetime

    @classmethod
    def from_domain(cls, device_token: DeviceToken) -> "DeviceTokenResponse":
        return cls.model_validate(device_token.to_dict())


def build_pagination(total: int, page: int, limit: int) -> PaginationInfo:
    pages = (total + limit - 1) // limit if limit else 0
    return PaginationInfo(total=total, page=page, pages=pages, limit=limit)
