"""Inbound transport events delivered to the heartbeat monitor as messages."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional


class ConnectionEventKind(str, Enum):
    """What happened on a connection."""
    PONG = "pong"
    CLOSE = "close"
    ERROR = "error"


@dataclass(frozen=True)
class ConnectionEvent:
    """A single event observed by the ingress handler for one connection."""
    kind: ConnectionEventKind
    connection_id: str
    user_id: str
    detail: Optional[str] = None
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
