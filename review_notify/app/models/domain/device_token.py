"""Domain model for push-capable device tokens."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class DevicePlatform(str, Enum):
    """Platforms a device token can belong to."""
    IOS = "ios"
    ANDROID = "android"

    @classmethod
    def parse(cls, value: Any) -> Optional["DevicePlatform"]:
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


def as_utc(value: Optional[datetime]) -> datetime:
    if value is None:
        return datetime.now(timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass
class DeviceToken:
    """An opaque push token owned by exactly one user."""
    token: str
    user_id: str
    platform: DevicePlatform
    last_used: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "token": self.token,
            "user_id": self.user_id,
            "platform": self.platform.value,
            "last_used": self.last_used.isoformat(),
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "DeviceToken":
        return cls(
            token=document["token"],
            user_id=document["user_id"],
            platform=DevicePlatform(document["platform"]),
            last_used=as_utc(document.get("last_used")),
            created_at=as_utc(document.get("created_at")),
        )
