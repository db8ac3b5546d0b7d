"""
Connection registry for live notification channels.

The registry is the only state shared between the ingress handler, the
heartbeat monitor and the fan-out dispatcher. It maps a user id to every
channel that user currently holds open (one per device/tab) and keeps a
secondary index by connection id.

All mutation and snapshotting happens under one asyncio lock. Network I/O
(sending, probing, closing) never happens while the lock is held: callers
take a snapshot and talk to the transports afterwards.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Tuple

from .exceptions import ErrorCode, TransportError
from ..utils.logging import get_logger, websocket_logger

logger = get_logger(__name__)


# WebSocket close codes used by the registry and heartbeat
CLOSE_NORMAL = 1000
CLOSE_GOING_AWAY = 1001
CLOSE_POLICY_VIOLATION = 1008


class Transport(Protocol):
    """Minimal surface the registry needs from a push channel."""

    async def send(self, message: Dict[str, Any]) -> None:
        ...

    async def ping(self) -> None:
        ...

    async def close(self, code: int = CLOSE_NORMAL, reason: str = "") -> None:
        ...


class ConnectionState(str, Enum):
    """Liveness of a registered connection."""
    ALIVE = "alive"
    SUSPECT = "suspect"


@dataclass
class Connection:
    """A registered push channel owned by the registry."""
    connection_id: str
    user_id: str
    transport: Transport
    state: ConnectionState = ConnectionState.ALIVE
    opened_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    last_probe_at: Optional[datetime] = None
    last_pong_at: Optional[datetime] = None
    messages_sent: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Describe the connection without the transport handle."""
        return {
            "connection_id": self.connection_id,
            "user_id": self.user_id,
            "state": self.state.value,
            "opened_at": self.opened_at.isoformat(),
            "last_probe_at": self.last_probe_at.isoformat() if self.last_probe_at else None,
            "last_pong_at": self.last_pong_at.isoformat() if self.last_pong_at else None,
            "messages_sent": self.messages_sent,
        }


async def close_transport(connection: Connection, code: int, reason: str) -> None:
    """Close a transport that may already be gone; failures are logged, not raised."""
    try:
        await connection.transport.close(code=code, reason=reason)
    except Exception as e:
        logger.debug(
            "Transport already closed",
            connection_id=connection.connection_id,
            user_id=connection.user_id,
            error=str(e)
        )


class ConnectionRegistry:
    """
    Tracks which users hold a live push channel.

    A user may hold any number of connections at once; registering a new
    one never touches the others. Unregistering is idempotent.
    """

    def __init__(self):
        self._lock = asyncio.Lock()
        self._by_user: Dict[str, Dict[str, Connection]] = {}
        self._by_id: Dict[str, Connection] = {}
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Open the registry for registrations."""
        self._running = True
        logger.info("Connection registry started")

    async def stop(self) -> None:
        """Refuse new registrations, then close every live connection."""
        self._running = False
        closed = await self.close_all()
        logger.info("Connection registry stopped", closed_connections=closed)

    async def register(self, user_id: str, transport: Transport) -> str:
        """
        Register a transport for a user.

        Returns:
            The new connection id

        Raises:
            TransportError: If the registry has been stopped
        """
        if not self._running:
            raise TransportError(
                "Connection registry is not accepting connections",
                error_code=ErrorCode.REGISTRY_CLOSED,
                user_id=user_id
            )

        connection = Connection(
            connection_id=uuid.uuid4().hex,
            user_id=user_id,
            transport=transport
        )

        async with self._lock:
            self._by_user.setdefault(user_id, {})[connection.connection_id] = connection
            self._by_id[connection.connection_id] = connection
            user_connections = len(self._by_user[user_id])

        websocket_logger.connection_established(
            connection_id=connection.connection_id,
            user_id=user_id,
            user_connections=user_connections
        )
        return connection.connection_id

    async def unregister(self, user_id: str, connection_id: str) -> bool:
        """
        Remove a connection from the registry.

        Returns:
            True if the connection was registered, False if it was already gone
        """
        async with self._lock:
            removed = self._remove_locked(user_id, connection_id)

        if removed is not None:
            logger.debug(
                "Connection unregistered",
                connection_id=connection_id,
                user_id=user_id
            )
        return removed is not None

    def _remove_locked(self, user_id: str, connection_id: str) -> Optional[Connection]:
        connection = self._by_id.get(connection_id)
        if connection is None or connection.user_id != user_id:
            return None

        del self._by_id[connection_id]
        user_connections = self._by_user.get(user_id, {})
        user_connections.pop(connection_id, None)
        if not user_connections:
            self._by_user.pop(user_id, None)
        return connection

    async def connections_for(self, user_id: str) -> List[Connection]:
        """Snapshot of a user's live connections."""
        async with self._lock:
            return list(self._by_user.get(user_id, {}).values())

    async def all_connections(self) -> List[Tuple[str, Connection]]:
        """Snapshot of every live connection as (user_id, connection) pairs."""
        async with self._lock:
            return [
                (user_id, connection)
                for user_id, connections in self._by_user.items()
                for connection in connections.values()
            ]

    def get(self, connection_id: str) -> Optional[Connection]:
        return self._by_id.get(connection_id)

    def is_registered(self, connection_id: str) -> bool:
        return connection_id in self._by_id

    def is_user_connected(self, user_id: str) -> bool:
        return bool(self._by_user.get(user_id))

    def connected_users(self) -> List[str]:
        return list(self._by_user.keys())

    def connection_count(self) -> int:
        return len(self._by_id)

    def user_count(self) -> int:
        return len(self._by_user)

    async def mark_alive(self, connection_id: str) -> bool:
        """Record a pong for a connection. Returns False if it is no longer registered."""
        async with self._lock:
            connection = self._by_id.get(connection_id)
            if connection is None:
                return False
            connection.state = ConnectionState.ALIVE
            connection.last_pong_at = datetime.now(timezone.utc)
            return True

    async def begin_probe_cycle(self) -> Tuple[List[Connection], List[Connection]]:
        """
        Start a heartbeat cycle.

        Connections still suspect from the previous cycle are removed and
        returned as stale. Every other connection is marked suspect and
        returned for probing.

        Returns:
            (stale, to_probe)
        """
        now = datetime.now(timezone.utc)
        stale: List[Connection] = []
        to_probe: List[Connection] = []

        async with self._lock:
            for connection in list(self._by_id.values()):
                if connection.state == ConnectionState.SUSPECT:
                    self._remove_locked(connection.user_id, connection.connection_id)
                    stale.append(connection)
                else:
                    connection.state = ConnectionState.SUSPECT
                    connection.last_probe_at = now
                    to_probe.append(connection)

        return stale, to_probe

    async def close_user_connections(
        self,
        user_id: str,
        code: int = CLOSE_NORMAL,
        reason: str = "Closed by server"
    ) -> int:
        """Unregister and close every connection a user holds."""
        async with self._lock:
            connections = list(self._by_user.get(user_id, {}).values())
            for connection in connections:
                self._remove_locked(user_id, connection.connection_id)

        for connection in connections:
            await close_transport(connection, code, reason)
            websocket_logger.connection_closed(connection.connection_id, user_id, reason)

        return len(connections)

    async def close_all(self, code: int = CLOSE_GOING_AWAY, reason: str = "Server shutdown") -> int:
        """Unregister and close every live connection."""
        async with self._lock:
            connections = list(self._by_id.values())
            self._by_id.clear()
            self._by_user.clear()

        if connections:
            await asyncio.gather(
                *(close_transport(connection, code, reason) for connection in connections)
            )
        return len(connections)

    def get_stats(self) -> Dict[str, Any]:
        """Registry counters for health reporting."""
        return {
            "running": self._running,
            "connections": self.connection_count(),
            "users": self.user_count(),
        }
