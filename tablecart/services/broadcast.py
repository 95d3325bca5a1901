"""
Fan-out of cart snapshots and sender-scoped error replies.

Both work against the transport-independent ``Channel``; the WebSocket
adapter lives in ``tablecart.core.websocket``.
"""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import deque
from typing import Any

from tablecart.core.constants import CartEvent
from tablecart.core.exceptions import CartError
from tablecart.core.metrics import MetricsRegistry, metrics as default_metrics
from tablecart.domain.cart import CartSnapshot, Session
from tablecart.services.session_registry import SessionRegistry

logger = logging.getLogger(__name__)


class Channel(ABC):
    """Bidirectional connection to one client."""

    channel_id: str
    session_id: str | None = None

    @abstractmethod
    async def send(self, event: str, payload: dict[str, Any]) -> None:
        """Deliver one event; raises when the channel is gone."""
        pass

    @property
    @abstractmethod
    def closed(self) -> bool:
        pass


class BroadcastDispatcher:
    """Pushes full snapshots to every channel subscribed to a session.

    Each channel has its own outbox drained by a single worker task, so
    frames reach one channel in the order they were queued even when its
    ``send`` awaits. Workers exit once their outbox is empty.
    """

    def __init__(self, registry: SessionRegistry, metrics: MetricsRegistry | None = None):
        self._registry = registry
        self._metrics = metrics or default_metrics
        self._outboxes: dict[Channel, deque] = {}
        self._workers: dict[Channel, asyncio.Task] = {}

    def broadcast(self, session: Session, snapshot: CartSnapshot) -> int:
        """Queue the snapshot for each channel, the sender included.

        Returns the number of channels queued. Does not wait for delivery.
        """
        payload = snapshot.to_dict()
        channels = list(session.channels)
        for channel in channels:
            self.enqueue(session.session_id, channel, CartEvent.UPDATED, payload)

        logger.debug(
            f"Broadcast v{snapshot.version} of session {session.session_id} to {len(channels)} channels"
        )
        return len(channels)

    def enqueue(
        self, session_id: str, channel: Channel, event: CartEvent, payload: dict
    ) -> asyncio.Task:
        """Append one frame to the channel's outbox and return its worker."""
        outbox = self._outboxes.setdefault(channel, deque())
        outbox.append((session_id, event, payload))

        worker = self._workers.get(channel)
        if worker is None:
            worker = asyncio.create_task(self._drain_outbox(channel, outbox))
            self._workers[channel] = worker
        return worker

    async def send_to_session(self, session: Session, event: CartEvent, payload: dict) -> int:
        """Queue an event behind pending snapshots and wait for delivery."""
        channels = list(session.channels)
        workers = {self.enqueue(session.session_id, ch, event, payload) for ch in channels}
        if workers:
            await asyncio.gather(*workers, return_exceptions=True)
        return len(channels)

    async def _drain_outbox(self, channel: Channel, outbox: deque) -> None:
        try:
            while outbox:
                session_id, event, payload = outbox.popleft()
                if not await self._deliver(session_id, channel, payload, event):
                    outbox.clear()
        finally:
            # no await between the empty check and this cleanup
            self._outboxes.pop(channel, None)
            self._workers.pop(channel, None)

    async def _deliver(
        self,
        session_id: str,
        channel: Channel,
        payload: dict,
        event: CartEvent = CartEvent.UPDATED,
    ) -> bool:
        try:
            await channel.send(event.value, payload)
        except Exception as e:
            logger.warning(
                f"Dropping channel {getattr(channel, 'channel_id', channel)} "
                f"from session {session_id}: {e}"
            )
            self._metrics.broadcasts_total.inc(status="failed")
            self._registry.unsubscribe(session_id, channel)
            if channel.session_id == session_id:
                channel.session_id = None
            return False

        self._metrics.broadcasts_total.inc(status="sent")
        return True

    @property
    def pending(self) -> int:
        """Channels that still have frames waiting."""
        return len(self._workers)

    async def drain(self) -> None:
        """Wait for in-flight deliveries."""
        while self._workers:
            await asyncio.gather(*list(self._workers.values()), return_exceptions=True)


class ErrorReporter:
    """Replies to the originating channel only; never broadcasts."""

    def __init__(self, metrics: MetricsRegistry | None = None):
        self._metrics = metrics or default_metrics

    async def report_error(self, channel: Channel, operation: str, error: CartError) -> bool:
        self._metrics.errors_total.inc(operation=operation, code=error.code.value)
        logger.info(f"Rejected {operation} from channel {channel.channel_id}: {error.code.value}")
        try:
            await channel.send(CartEvent.ERROR.value, error.to_payload(operation))
            return True
        except Exception as e:
            logger.warning(f"Failed to report error to channel {channel.channel_id}: {e}")
            return False
