"""
Notification Service - Fan-out Dispatcher

This module turns notification-worthy application events into persisted
notification records and live pushes:

- ``notify`` persists one record, then pushes it to every live connection
  of the recipient
- ``notify_many``, ``broadcast_except`` and ``notify_followers`` push a wire
  message to a resolved set of recipients
- ``*_and_sync`` operations mutate the store and push the recomputed unread
  count to the owner

Persistence always happens before delivery and delivery is best-effort. A
push that fails or times out drops that one connection from the registry
and never aborts the call. Any failure while creating a notification is
logged and reported as "no notification"; the triggering feature (posting a
comment, liking a review) is never failed by its side channel.
"""

import asyncio
import dataclasses
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from ..core.connection_registry import (
    CLOSE_GOING_AWAY,
    Connection,
    ConnectionRegistry,
    close_transport,
)
from ..core.exceptions import (
    ErrorCode,
    StoreError,
    TransportError,
    ValidationError
)
from ..models.domain.notification import (
    Notification,
    NotificationCandidate,
    NotificationType,
    SenderSnapshot,
    TargetRef,
    TargetType
)
from ..repositories.mongodb.notification_repository import NotificationRepository
from ..repositories.mongodb.user_repository import UserDirectory
from ..utils.logging import (
    dump_event_payload,
    get_logger,
    log_notification_event,
    websocket_logger
)
from review_notify.config.settings import NotificationSettings, get_settings

logger = get_logger(__name__)


NEW_NOTIFICATION = "new_notification"
UNREAD_COUNT_UPDATE = "unread_count_update"


def new_notification_message(notification: Notification) -> Dict[str, Any]:
    return {"type": NEW_NOTIFICATION, "notification": notification.to_dict()}


def unread_count_message(count: int) -> Dict[str, Any]:
    return {"type": UNREAD_COUNT_UPDATE, "count": count}


@dataclass
class DispatchStats:
    """Counters for notification creation and delivery."""
    notifications_created: int = 0
    notifications_skipped: int = 0
    pushes_delivered: int = 0
    pushes_failed: int = 0


class _RecipientLock:
    __slots__ = ("lock", "holders")

    def __init__(self):
        self.lock = asyncio.Lock()
        self.holders = 0


class NotificationDispatcher:
    """
    Fans notification events out to persisted records and live connections.

    The registry, store and user directory are injected; the dispatcher
    holds no module-level state.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        store: NotificationRepository,
        user_directory: Optional[UserDirectory] = None,
        send_timeout_seconds: float = 5.0,
        settings: Optional[NotificationSettings] = None
    ):
        """
        Initialize the dispatcher.

        Args:
            registry: Live connection registry
            store: Notification store
            user_directory: Followers and display snapshot lookups
            send_timeout_seconds: Upper bound for one push to one connection
            settings: Notification behaviour settings
        """
        self.registry = registry
        self.store = store
        self.user_directory = user_directory
        self.send_timeout_seconds = send_timeout_seconds
        self.settings = settings or get_settings().notifications

        self.stats = DispatchStats()
        self._recipient_locks: Dict[str, _RecipientLock] = {}

    # Single-recipient notifications

    async def notify(
        self,
        candidate: NotificationCandidate,
        allow_self: bool = False
    ) -> Optional[Notification]:
        """
        Persist a notification and push it to the recipient's live connections.

        Args:
            candidate: Event to turn into a notification
            allow_self: Deliver even when sender and recipient are the same user

        Returns:
            The persisted notification, or None if none was created
        """
        if candidate.is_self_notification and self.settings.suppress_self_notifications and not allow_self:
            self.stats.notifications_skipped += 1
            logger.debug(
                "Skipping self notification",
                recipient=candidate.recipient,
                notification_type=str(candidate.type)
            )
            return None

        try:
            # Taken before the first await so records land in call order
            async with self._recipient_lock(candidate.recipient or ""):
                candidate = await self._with_sender_snapshot(candidate)
                notification = await self.store.create(candidate)
        except ValidationError as e:
            self.stats.notifications_skipped += 1
            logger.warning(
                "Notification candidate rejected",
                recipient=candidate.recipient,
                error=str(e),
                field_errors=e.details.get("field_errors")
            )
            return None
        except StoreError as e:
            self.stats.notifications_skipped += 1
            logger.error(
                "Notification could not be persisted",
                recipient=candidate.recipient,
                error=str(e)
            )
            return None
        except Exception as e:
            self.stats.notifications_skipped += 1
            logger.error(
                "Unexpected error while creating notification",
                recipient=candidate.recipient,
                error=str(e),
                exc_info=True
            )
            return None

        self.stats.notifications_created += 1

        reached = await self.push_to_user(notification.recipient, new_notification_message(notification))

        log_notification_event(
            "Notification created",
            notification_id=notification.id,
            recipient=notification.recipient,
            notification_type=notification.type.value,
            connections_reached=reached
        )
        return notification

    async def push_to_user(self, user_id: str, message: Dict[str, Any]) -> int:
        """
        Push a message to every live connection of a user.

        Returns:
            Number of connections the message reached
        """
        connections = await self.registry.connections_for(user_id)
        if not connections:
            return 0

        results = await asyncio.gather(*(self._send(connection, message) for connection in connections))
        return sum(1 for delivered in results if delivered)

    # Multi-recipient fan-out

    async def notify_many(self, user_ids: Iterable[str], payload: Dict[str, Any]) -> int:
        """Push a message to each user in a set. Returns connections reached."""
        recipients = {user_id for user_id in user_ids if user_id}
        if not recipients:
            return 0

        results = await asyncio.gather(*(self.push_to_user(user_id, payload) for user_id in recipients))
        return sum(results)

    async def broadcast_except(self, payload: Dict[str, Any], excluded_user_id: Optional[str] = None) -> int:
        """Push a message to every connected user except one. Returns connections reached."""
        connections = [
            connection
            for user_id, connection in await self.registry.all_connections()
            if user_id != excluded_user_id
        ]
        if not connections:
            return 0

        results = await asyncio.gather(*(self._send(connection, payload) for connection in connections))
        reached = sum(1 for delivered in results if delivered)

        logger.info(
            "Broadcast delivered",
            message_type=payload.get("type"),
            excluded_user_id=excluded_user_id,
            connections_reached=reached
        )
        return reached

    async def notify_followers(self, user_id: str, payload: Dict[str, Any]) -> int:
        """
        Push a message to a user's followers.

        A failed followers lookup is logged and delivers nothing.
        """
        followers = await self._resolve_followers(user_id)
        if not followers:
            return 0
        return await self.notify_many(followers, payload)

    # Store mutations with unread sync

    async def mark_read_and_sync(self, notification_id: str, user_id: str) -> Optional[Notification]:
        """
        Mark a notification read and push the new unread count to its owner.

        Raises:
            ValidationError: If the notification id is malformed
        """
        notification = await self.store.mark_read(notification_id, user_id)
        if notification is not None:
            await self.sync_unread_count(user_id)
        return notification

    async def mark_all_read_and_sync(self, user_id: str) -> int:
        modified = await self.store.mark_all_read(user_id)
        await self.sync_unread_count(user_id)
        return modified

    async def delete_and_sync(self, notification_id: str, user_id: str) -> bool:
        deleted = await self.store.delete(notification_id, user_id)
        if deleted:
            await self.sync_unread_count(user_id)
        return deleted

    async def clear_all_and_sync(self, user_id: str) -> int:
        deleted = await self.store.clear_all(user_id)
        await self.sync_unread_count(user_id)
        return deleted

    async def sync_unread_count(self, user_id: str) -> int:
        """Push the current unread count to a user. Returns connections reached."""
        count = await self.store.unread_count(user_id)
        return await self.push_to_user(user_id, unread_count_message(count))

    async def unread_count(self, user_id: str) -> int:
        return await self.store.unread_count(user_id)

    async def list_unread(self, user_id: str, limit: Optional[int] = None) -> List[Notification]:
        return await self.store.list_unread(user_id, limit=limit)

    # Event builders used by review, comment, news and poll features

    async def review_liked(
        self,
        recipient_id: str,
        sender_id: str,
        review_id: str,
        place: Optional[str] = None,
        preview: Optional[str] = None
    ) -> Optional[Notification]:
        return await self.notify(self._candidate(
            NotificationType.REVIEW_LIKE, recipient_id, sender_id,
            TargetRef(content_type=TargetType.REVIEW, id=review_id, review_id=review_id,
                      place=place, preview=preview)
        ))

    async def comment_liked(
        self,
        recipient_id: str,
        sender_id: str,
        comment_id: str,
        review_id: str,
        preview: Optional[str] = None
    ) -> Optional[Notification]:
        return await self.notify(self._candidate(
            NotificationType.COMMENT_LIKE, recipient_id, sender_id,
            TargetRef(content_type=TargetType.COMMENT, id=comment_id, review_id=review_id, preview=preview)
        ))

    async def review_commented(
        self,
        recipient_id: str,
        sender_id: str,
        comment_id: str,
        review_id: str,
        preview: Optional[str] = None
    ) -> Optional[Notification]:
        return await self.notify(self._candidate(
            NotificationType.REVIEW_COMMENT, recipient_id, sender_id,
            TargetRef(content_type=TargetType.COMMENT, id=comment_id, review_id=review_id, preview=preview)
        ))

    async def comment_replied(
        self,
        recipient_id: str,
        sender_id: str,
        reply_id: str,
        review_id: str,
        preview: Optional[str] = None
    ) -> Optional[Notification]:
        return await self.notify(self._candidate(
            NotificationType.COMMENT_REPLY, recipient_id, sender_id,
            TargetRef(content_type=TargetType.COMMENT, id=reply_id, review_id=review_id, preview=preview)
        ))

    async def news_liked(
        self,
        recipient_id: str,
        sender_id: str,
        news_id: str,
        title: Optional[str] = None
    ) -> Optional[Notification]:
        return await self.notify(self._candidate(
            NotificationType.NEWS_LIKE, recipient_id, sender_id,
            TargetRef(content_type=TargetType.NEWS, id=news_id, title=title)
        ))

    async def poll_voted(
        self,
        recipient_id: str,
        sender_id: str,
        poll_id: str,
        title: Optional[str] = None
    ) -> Optional[Notification]:
        return await self.notify(self._candidate(
            NotificationType.POLL_VOTE, recipient_id, sender_id,
            TargetRef(content_type=TargetType.POLL, id=poll_id, title=title)
        ))

    async def new_review_for_followers(
        self,
        author_id: str,
        review_id: str,
        place: Optional[str] = None,
        preview: Optional[str] = None
    ) -> List[Notification]:
        """Persist and push one ``new_review`` notification per follower of the author."""
        followers = await self._resolve_followers(author_id)
        target = TargetRef(content_type=TargetType.REVIEW, id=review_id, review_id=review_id,
                           place=place, preview=preview)

        results = await asyncio.gather(*(
            self.notify(self._candidate(NotificationType.NEW_REVIEW, follower_id, author_id, target))
            for follower_id in sorted(followers)
        ))
        return [notification for notification in results if notification is not None]

    async def new_user_joined(self, new_user_id: str, admin_ids: Iterable[str]) -> List[Notification]:
        """Tell each admin that a user joined."""
        target = TargetRef(content_type=TargetType.USER, id=new_user_id)

        results = await asyncio.gather(*(
            self.notify(self._candidate(NotificationType.NEW_USER, admin_id, new_user_id, target))
            for admin_id in admin_ids
        ))
        return [notification for notification in results if notification is not None]

    def get_stats(self) -> Dict[str, Any]:
        return dataclasses.asdict(self.stats)

    # Internals

    def _candidate(
        self,
        notification_type: NotificationType,
        recipient_id: str,
        sender_id: str,
        target: TargetRef
    ) -> NotificationCandidate:
        return NotificationCandidate(
            recipient=recipient_id,
            type=notification_type,
            sender=SenderSnapshot(id=sender_id),
            target=target,
        )

    async def _with_sender_snapshot(self, candidate: NotificationCandidate) -> NotificationCandidate:
        """Fill in missing sender display fields from the user directory."""
        sender = candidate.sender
        if not sender or not sender.id or (sender.display_name and sender.avatar_ref):
            return candidate

        snapshot = None
        if self.user_directory is not None:
            try:
                snapshot = await self.user_directory.display_snapshot(sender.id)
            except Exception as e:
                logger.warning("Sender snapshot unavailable", sender_id=sender.id, error=str(e))

        display_name = sender.display_name or (snapshot.display_name if snapshot else None)
        avatar_ref = sender.avatar_ref or (snapshot.avatar_ref if snapshot else None)

        return dataclasses.replace(
            candidate,
            sender=SenderSnapshot(
                id=sender.id,
                display_name=display_name or self.settings.unknown_sender_name,
                avatar_ref=avatar_ref,
            )
        )

    async def _resolve_followers(self, user_id: str) -> List[str]:
        if self.user_directory is None:
            logger.warning("No user directory configured, cannot resolve followers", user_id=user_id)
            return []

        try:
            followers = await self.user_directory.followers(user_id)
        except Exception as e:
            logger.error("Follower lookup failed", user_id=user_id, error=str(e))
            return []

        return [follower for follower in followers if follower and follower != user_id]

    @asynccontextmanager
    async def _recipient_lock(self, recipient: str):
        """Serialise persistence per recipient so records land in call order."""
        entry = self._recipient_locks.get(recipient)
        if entry is None:
            entry = self._recipient_locks[recipient] = _RecipientLock()
        entry.holders += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.holders -= 1
            if entry.holders == 0:
                self._recipient_locks.pop(recipient, None)

    async def _send(self, connection: Connection, message: Dict[str, Any]) -> bool:
        """Send to one connection; on failure drop it from the registry."""
        if not self.registry.is_registered(connection.connection_id):
            return False

        try:
            await self._send_or_raise(connection, message)
        except TransportError as e:
            self.stats.pushes_failed += 1
            websocket_logger.push_failed(
                connection.connection_id,
                connection.user_id,
                message_type=str(message.get("type")),
                error=str(e)
            )
            if await self.registry.unregister(connection.user_id, connection.connection_id):
                await close_transport(connection, CLOSE_GOING_AWAY, "Push failed")
            return False

        connection.messages_sent += 1
        self.stats.pushes_delivered += 1
        websocket_logger.message_sent(
            connection.connection_id,
            message_type=str(message.get("type")),
            message_size=len(dump_event_payload(message))
        )
        return True

    async def _send_or_raise(self, connection: Connection, message: Dict[str, Any]) -> None:
        try:
            await asyncio.wait_for(connection.transport.send(message), timeout=self.send_timeout_seconds)
        except asyncio.TimeoutError as e:
            raise TransportError(
                f"Push timed out after {self.send_timeout_seconds}s",
                error_code=ErrorCode.TRANSPORT_TIMEOUT,
                connection_id=connection.connection_id,
                user_id=connection.user_id
            ) from e
        except Exception as e:
            raise TransportError(
                f"Push failed: {e or type(e).__name__}",
                connection_id=connection.connection_id,
                user_id=connection.user_id
            ) from e
