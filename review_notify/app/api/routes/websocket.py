"""
WebSocket ingress for live notification channels.

A client opens ``/ws/notifications/{user_id}`` (or
``/ws/notifications?user_id=...``). A missing, malformed or unknown id is
refused with close code 1008 before the handshake completes, and nothing is
registered. Otherwise the socket is accepted, registered, sent the current
unread count, and then read until it disconnects.

The only client frame the server acts on is ``{"type": "pong"}``, the answer
to the heartbeat's ``{"type": "ping"}`` probe. Closes and errors are turned
into ``ConnectionEvent`` messages for the heartbeat monitor, and the session
always ends with an idempotent unregister.
"""

import json
import re
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, WebSocket, status
from starlette.websockets import WebSocketState

from ...core.components import NotificationComponents
from ...core.connection_registry import CLOSE_NORMAL
from ...core.exceptions import ErrorCode, LookupFailure, StoreError, TransportError
from ...models.domain.connection_event import ConnectionEvent, ConnectionEventKind
from ...utils.logging import (
    clear_correlation_id,
    get_logger,
    set_correlation_id,
    websocket_logger
)
from ..deps import get_components

logger = get_logger(__name__)
router = APIRouter()


class WebSocketTransport:
    """Adapts a Starlette WebSocket to the registry's transport interface."""

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket

    async def send(self, message: Dict[str, Any]) -> None:
        await self.websocket.send_text(json.dumps(message, default=str))

    async def ping(self) -> None:
        # ASGI exposes no protocol-level ping, so probe with an application frame
        await self.send({"type": "ping", "timestamp": datetime.now(timezone.utc).isoformat()})

    async def close(self, code: int = CLOSE_NORMAL, reason: str = "") -> None:
        if self.websocket.application_state == WebSocketState.DISCONNECTED:
            return
        await self.websocket.close(code=code, reason=reason)


async def validate_channel_user(raw_user_id: Optional[str], components: NotificationComponents) -> str:
    """
    Check the user id a channel is opened for.

    Raises:
        LookupFailure: If the id is missing, malformed or (when required) unknown
    """
    user_id = (raw_user_id or "").strip()
    if not user_id:
        raise LookupFailure("No user id on channel open", error_code=ErrorCode.LOOKUP_MISSING_IDENTITY)

    if not re.fullmatch(components.settings.realtime.user_id_pattern, user_id):
        raise LookupFailure(
            "Malformed user id on channel open",
            error_code=ErrorCode.LOOKUP_MALFORMED_USER_ID,
            user_id=user_id
        )

    if components.settings.realtime.require_known_user and components.user_directory is not None:
        try:
            known = await components.user_directory.exists(user_id)
        except StoreError as e:
            logger.error("User lookup failed on channel open", user_id=user_id, error=str(e))
            known = False
        if not known:
            raise LookupFailure(
                "Unknown user id on channel open",
                error_code=ErrorCode.LOOKUP_UNKNOWN_USER,
                user_id=user_id
            )

    return user_id


@router.websocket("/notifications/{user_id}")
async def notification_channel(
    websocket: WebSocket,
    user_id: str,
    components: NotificationComponents = Depends(get_components)
):
    """Live notification channel with the user id in the path."""
    await serve_notification_channel(websocket, user_id, components)


@router.websocket("/notifications")
async def notification_channel_by_query(
    websocket: WebSocket,
    user_id: Optional[str] = Query(None, description="User the channel belongs to"),
    components: NotificationComponents = Depends(get_components)
):
    """Live notification channel with the user id as a query parameter."""
    await serve_notification_channel(websocket, user_id, components)


async def serve_notification_channel(
    websocket: WebSocket,
    raw_user_id: Optional[str],
    components: NotificationComponents
) -> None:
    """Run one channel session from handshake to unregister."""
    correlation_id = set_correlation_id(f"ws-{uuid.uuid4().hex[:12]}")

    try:
        user_id = await validate_channel_user(raw_user_id, components)
    except LookupFailure as e:
        websocket_logger.connection_rejected(raw_user_id, e.message)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        clear_correlation_id()
        return

    await websocket.accept()
    transport = WebSocketTransport(websocket)

    try:
        connection_id = await components.registry.register(user_id, transport)
    except TransportError as e:
        logger.warning("Channel refused, registry closed", user_id=user_id, error=str(e))
        await transport.close(code=status.WS_1001_GOING_AWAY, reason="Server shutting down")
        clear_correlation_id()
        return

    heartbeat = components.heartbeat

    try:
        if components.settings.realtime.sync_unread_on_connect:
            await components.dispatcher.sync_unread_count(user_id)

        await _receive_frames(websocket, heartbeat, connection_id, user_id)

        await heartbeat.handle_event(ConnectionEvent(
            kind=ConnectionEventKind.CLOSE,
            connection_id=connection_id,
            user_id=user_id,
            detail="Client disconnected"
        ))
    except Exception as exc:
        logger.error(
            "WebSocket connection error",
            connection_id=connection_id,
            user_id=user_id,
            error=str(exc),
            correlation_id=correlation_id
        )
        await heartbeat.handle_event(ConnectionEvent(
            kind=ConnectionEventKind.ERROR,
            connection_id=connection_id,
            user_id=user_id,
            detail=str(exc)
        ))
    finally:
        await components.registry.unregister(user_id, connection_id)
        clear_correlation_id()


async def _receive_frames(websocket: WebSocket, heartbeat, connection_id: str, user_id: str) -> None:
    """Read client frames until the client disconnects."""
    async for raw in websocket.iter_text():
        try:
            frame = json.loads(raw)
        except json.JSONDecodeError:
            logger.debug("Ignoring non-JSON frame", connection_id=connection_id)
            continue

        frame_type = frame.get("type") if isinstance(frame, dict) else None

        if frame_type == "pong":
            await heartbeat.handle_event(ConnectionEvent(
                kind=ConnectionEventKind.PONG,
                connection_id=connection_id,
                user_id=user_id
            ))
        else:
            logger.debug("Ignoring client frame", connection_id=connection_id, frame_type=frame_type)
