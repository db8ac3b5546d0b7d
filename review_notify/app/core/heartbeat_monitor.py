"""
Heartbeat monitor for live notification channels.

Every cycle the monitor walks a snapshot of the registry. A connection that
has not answered the previous probe is evicted: it is unregistered and its
transport closed with 1001. Every other connection is marked suspect and
probed again. A pong received before the next cycle brings a connection
back to alive.

Inbound transport events reach the monitor as ``ConnectionEvent`` messages
through ``handle_event``; the ingress handler never mutates the registry
directly for pongs, closes or errors.
"""

import asyncio
from typing import Any, Dict, List, Optional

from .connection_registry import (
    CLOSE_GOING_AWAY,
    Connection,
    ConnectionRegistry,
    close_transport,
)
from ..models.domain.connection_event import ConnectionEvent, ConnectionEventKind
from ..utils.logging import get_logger, websocket_logger

logger = get_logger(__name__)


class HeartbeatMonitor:
    """Probes registered connections and evicts the unresponsive ones."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        interval_seconds: float = 30.0,
        probe_timeout_seconds: Optional[float] = None
    ):
        """
        Initialize the heartbeat monitor.

        Args:
            registry: Registry whose connections are probed
            interval_seconds: Seconds between probe cycles
            probe_timeout_seconds: Upper bound for sending one probe
                (defaults to the cycle interval)
        """
        self.registry = registry
        self.interval_seconds = interval_seconds
        self.probe_timeout_seconds = probe_timeout_seconds or interval_seconds

        self._task: Optional[asyncio.Task] = None
        self._running = False
        self.cycles_run = 0
        self.evictions_total = 0

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the background probe loop."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._heartbeat_loop())

        logger.info("Heartbeat monitor started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        """Stop the background probe loop."""
        self._running = False

        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                logger.debug("Heartbeat loop cancelled")
        self._task = None

        logger.info("Heartbeat monitor stopped", cycles_run=self.cycles_run)

    async def run_cycle(self) -> List[str]:
        """
        Run one probe cycle.

        Returns:
            Connection ids evicted during this cycle
        """
        stale, to_probe = await self.registry.begin_probe_cycle()
        evicted: List[str] = []

        for connection in stale:
            await self._close_evicted(connection, "Missed heartbeat")
            evicted.append(connection.connection_id)

        results = await asyncio.gather(*(self._probe(connection) for connection in to_probe))

        for connection, delivered in zip(to_probe, results):
            if delivered:
                continue
            if await self.registry.unregister(connection.user_id, connection.connection_id):
                await self._close_evicted(connection, "Probe failed")
                evicted.append(connection.connection_id)

        self.cycles_run += 1
        self.evictions_total += len(evicted)

        if evicted:
            logger.info(
                "Heartbeat cycle evicted connections",
                evicted=len(evicted),
                probed=len(to_probe),
                remaining=self.registry.connection_count()
            )
        return evicted

    async def handle_event(self, event: ConnectionEvent) -> bool:
        """
        Apply an inbound transport event.

        Returns:
            True if the event changed registry state
        """
        if event.kind == ConnectionEventKind.PONG:
            return await self.registry.mark_alive(event.connection_id)

        removed = await self.registry.unregister(event.user_id, event.connection_id)
        if removed:
            if event.kind == ConnectionEventKind.ERROR:
                logger.warning(
                    "Connection error, unregistered",
                    connection_id=event.connection_id,
                    user_id=event.user_id,
                    detail=event.detail
                )
            websocket_logger.connection_closed(
                event.connection_id,
                event.user_id,
                reason=event.detail or event.kind.value
            )
        return removed

    async def _probe(self, connection: Connection) -> bool:
        try:
            await asyncio.wait_for(connection.transport.ping(), timeout=self.probe_timeout_seconds)
        except Exception as e:
            logger.warning(
                "Heartbeat probe failed",
                connection_id=connection.connection_id,
                user_id=connection.user_id,
                error=str(e) or type(e).__name__
            )
            return False
        return True

    async def _close_evicted(self, connection: Connection, reason: str) -> None:
        await close_transport(connection, CLOSE_GOING_AWAY, reason)
        websocket_logger.connection_evicted(connection.connection_id, connection.user_id, reason)

    async def _heartbeat_loop(self) -> None:
        """Background task driving probe cycles."""
        while self._running:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.run_cycle()
            except Exception as e:
                logger.error("Error in heartbeat loop", error=str(e))

    def get_stats(self) -> Dict[str, Any]:
        return {
            "running": self._running,
            "interval_seconds": self.interval_seconds,
            "cycles_run": self.cycles_run,
            "evictions_total": self.evictions_total,
        }
