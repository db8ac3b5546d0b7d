"""
Domain model for notifications.

A notification is a durable record addressed to one recipient. It carries
a snapshot of the sender taken at creation time and a reference to the
content that triggered it. Records are created once, flipped to read at most
once, and otherwise never updated.

This module also defines the candidate shape the dispatcher receives from
feature code. Candidates are deliberately permissive so that a malformed
event can be rejected by the store with a typed ValidationError instead of
failing at construction time inside the caller.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from bson import ObjectId


class NotificationType(str, Enum):
    """Kinds of events a user can be notified about."""

    REVIEW_LIKE = "review_like"
    COMMENT_LIKE = "comment_like"
    REVIEW_COMMENT = "review_comment"
    COMMENT_REPLY = "comment_reply"
    NEW_REVIEW = "new_review"          # A followed user posted a review
    NEW_USER = "new_user"              # A user joined (admin notice)
    NEWS_LIKE = "news_like"
    POLL_VOTE = "poll_vote"
    TEST = "test"

    @classmethod
    def parse(cls, value: Any) -> Optional["NotificationType"]:
        """Return the matching type, or None when the value is not a known type."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return None


class TargetType(str, Enum):
    """Kinds of content a notification can point at."""

    REVIEW = "review"
    COMMENT = "comment"
    NEWS = "news"
    POLL = "poll"
    USER = "user"
    TEST = "test"


# Types a client can filter its inbox by, with display labels
FILTERABLE_TYPES: List[Dict[str, str]] = [
    {"id": NotificationType.REVIEW_LIKE.value, "label": "Review Likes"},
    {"id": NotificationType.COMMENT_LIKE.value, "label": "Comment Likes"},
    {"id": NotificationType.REVIEW_COMMENT.value, "label": "Review Comments"},
    {"id": NotificationType.COMMENT_REPLY.value, "label": "Comment Replies"},
    {"id": NotificationType.NEWS_LIKE.value, "label": "News Likes"},
]


def default_target_type(notification_type: NotificationType) -> TargetType:
    """Target type implied by a notification type when the caller gave none."""
    mapping = {
        NotificationType.COMMENT_LIKE: TargetType.COMMENT,
        NotificationType.REVIEW_COMMENT: TargetType.COMMENT,
        NotificationType.COMMENT_REPLY: TargetType.COMMENT,
        NotificationType.NEWS_LIKE: TargetType.NEWS,
        NotificationType.POLL_VOTE: TargetType.POLL,
        NotificationType.NEW_USER: TargetType.USER,
        NotificationType.TEST: TargetType.TEST,
    }
    return mapping.get(notification_type, TargetType.REVIEW)


@dataclass(frozen=True)
class UserDisplaySnapshot:
    """Display fields of a user, as read from the user directory."""
    user_id: str
    display_name: Optional[str] = None
    avatar_ref: Optional[str] = None


@dataclass
class SenderSnapshot:
    """Who caused the notification, frozen at creation time."""
    id: Optional[str] = None
    display_name: Optional[str] = None
    avatar_ref: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "display_name": self.display_name,
            "avatar_ref": self.avatar_ref,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SenderSnapshot":
        data = data or {}
        return cls(
            id=data.get("id"),
            display_name=data.get("display_name"),
            avatar_ref=data.get("avatar_ref"),
        )


@dataclass
class TargetRef:
    """Reference to the content a notification is about."""
    content_type: Optional[TargetType] = None
    id: Optional[str] = None
    review_id: Optional[str] = None    # Parent review for comment targets
    place: Optional[str] = None        # Name of the reviewed location
    preview: Optional[str] = None      # Cached excerpt of the content
    title: Optional[str] = None        # News/poll title

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.content_type.value if self.content_type else None,
            "id": self.id,
            "review_id": self.review_id,
            "place": self.place,
            "preview": self.preview,
            "title": self.title,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "TargetRef":
        data = data or {}
        content_type = data.get("type")
        return cls(
            content_type=TargetType(content_type) if content_type else None,
            id=data.get("id"),
            review_id=data.get("review_id"),
            place=data.get("place"),
            preview=data.get("preview"),
            title=data.get("title"),
        )


@dataclass
class NotificationCandidate:
    """
    An event that may become a notification.

    Every field is optional here; ``missing_fields`` reports what the
    store will refuse.
    """
    recipient: Optional[str] = None
    type: Optional[Any] = None
    sender: SenderSnapshot = field(default_factory=SenderSnapshot)
    target: TargetRef = field(default_factory=TargetRef)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def missing_fields(self) -> List[str]:
        """Names of mandatory fields that are absent or unusable."""
        missing = []
        if not self.recipient:
            missing.append("recipient")
        if NotificationType.parse(self.type) is None:
            missing.append("type")
        if not self.sender or not self.sender.id:
            missing.append("sender.id")
        return missing

    @property
    def is_self_notification(self) -> bool:
        return bool(self.recipient) and self.sender is not None and self.recipient == self.sender.id


@dataclass
class Notification:
    """A persisted notification record."""
    id: str
    recipient: str
    type: NotificationType
    sender: SenderSnapshot
    target: TargetRef
    read: bool = False
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready representation used on the wire and in REST responses."""
        return {
            "id": self.id,
            "recipient": self.recipient,
            "type": self.type.value,
            "sender": self.sender.to_dict(),
            "target": self.target.to_dict(),
            "read": self.read,
            "created_at": self.created_at.isoformat(),
            "metadata": self.metadata,
        }

    def to_document(self) -> Dict[str, Any]:
        """MongoDB representation; ``_id`` is left to the caller."""
        return {
            "recipient": self.recipient,
            "type": self.type.value,
            "sender": self.sender.to_dict(),
            "target": self.target.to_dict(),
            "read": self.read,
            "created_at": self.created_at,
            "metadata": self.metadata,
        }

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "Notification":
        created_at = document.get("created_at") or datetime.now(timezone.utc)
        if created_at.tzinfo is None:
            # Mongo returns naive UTC datetimes
            created_at = created_at.replace(tzinfo=timezone.utc)
        return cls(
            id=str(document["_id"]),
            recipient=document["recipient"],
            type=NotificationType(document["type"]),
            sender=SenderSnapshot.from_dict(document.get("sender")),
            target=TargetRef.from_dict(document.get("target")),
            read=bool(document.get("read", False)),
            created_at=created_at,
            metadata=dict(document.get("metadata") or {}),
        )

    @classmethod
    def from_candidate(cls, candidate: NotificationCandidate) -> "Notification":
        """Build an unsaved record from a complete candidate."""
        notification_type = NotificationType.parse(candidate.type)
        target = candidate.target or TargetRef()
        if target.content_type is None:
            target = TargetRef(
                content_type=default_target_type(notification_type),
                id=target.id,
                review_id=target.review_id,
                place=target.place,
                preview=target.preview,
                title=target.title,
            )
        return cls(
            id=str(ObjectId()),
            recipient=candidate.recipient,
            type=notification_type,
            sender=candidate.sender,
            target=target,
            metadata=dict(candidate.metadata or {}),
        )
