"""
Cart synchronization gateway.

Routes channel events to the cart state machine and turns the outcome into
either a broadcast ``cart:updated`` or a sender-only ``cart:error``.

Per mutation: parse -> lookup session -> acquire session lock -> apply and
snapshot -> release lock -> broadcast. Fan-out never runs under the lock.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from tablecart.core.constants import CartEvent
from tablecart.core.exceptions import (
    AccessDeniedError,
    CartError,
    InvalidPayloadError,
    SessionNotFoundError,
)
from tablecart.core.metrics import MetricsRegistry, metrics as default_metrics
from tablecart.domain.cart import CartSnapshot
from tablecart.domain.requests import JoinRequest, MutationRequest, OperationKind
from tablecart.services.broadcast import BroadcastDispatcher, Channel, ErrorReporter
from tablecart.services.cart_service import CartService
from tablecart.services.session_registry import SessionRegistry

logger = logging.getLogger(__name__)

MUTATION_EVENTS = {
    CartEvent.ADD.value: OperationKind.ADD,
    CartEvent.UPDATE.value: OperationKind.UPDATE,
    CartEvent.REMOVE.value: OperationKind.REMOVE,
    CartEvent.CLEAR.value: OperationKind.CLEAR,
}


class CartSyncService:
    """Entry point for every event a cart channel sends."""

    def __init__(
        self,
        registry: SessionRegistry,
        cart_service: CartService,
        dispatcher: BroadcastDispatcher | None = None,
        reporter: ErrorReporter | None = None,
        metrics: MetricsRegistry | None = None,
    ):
        self.registry = registry
        self.cart_service = cart_service
        self._metrics = metrics or default_metrics
        self.dispatcher = dispatcher or BroadcastDispatcher(registry, self._metrics)
        self.reporter = reporter or ErrorReporter(self._metrics)

    # ------------------------------------------------------------------ #
    # Membership
    # ------------------------------------------------------------------ #

    async def join(
        self, channel: Channel, session_id: str, token: str | None = None
    ) -> CartSnapshot | None:
        """Subscribe the channel and send it the current cart."""
        if channel.session_id and channel.session_id != session_id:
            self.leave(channel)

        try:
            session = self.registry.subscribe(session_id, channel, token=token)
        except CartError as e:
            await self.reporter.report_error(channel, "join", e)
            return None

        channel.session_id = session_id
        snapshot = session.snapshot()
        # queued behind any snapshot already in flight to this channel
        await self.dispatcher.enqueue(
            session_id, channel, CartEvent.UPDATED, snapshot.to_dict()
        )
        if channel.session_id != session_id:
            logger.warning(f"Channel {channel.channel_id} failed right after joining")
            return None
        return snapshot

    def leave(self, channel: Channel) -> None:
        if channel.session_id is None:
            return
        self.registry.unsubscribe(channel.session_id, channel)
        channel.session_id = None

    def disconnect(self, channel: Channel) -> None:
        self.leave(channel)
        logger.info(f"Channel disconnected: {channel.channel_id}")

    # ------------------------------------------------------------------ #
    # Mutations
    # ------------------------------------------------------------------ #

    async def handle_mutation(
        self, channel: Channel, kind: OperationKind | str, data: Any = None
    ) -> CartSnapshot | None:
        """Apply one mutation; broadcast on success, report to sender on failure."""
        operation = OperationKind(kind).value
        try:
            request = MutationRequest.parse(kind, data)
            session = self._session_for(channel, request)
            with self._metrics.time_mutation(operation):
                async with session.lock:
                    if session.closed:
                        raise SessionNotFoundError(session.session_id)
                    snapshot = self.cart_service.apply(session, request)
        except SessionNotFoundError as e:
            # terminal for this channel: it has to join again
            if channel.session_id == e.session_id:
                channel.session_id = None
            self._metrics.mutations_total.inc(operation=operation, status="rejected")
            await self.reporter.report_error(channel, operation, e)
            return None
        except CartError as e:
            self._metrics.mutations_total.inc(operation=operation, status="rejected")
            await self.reporter.report_error(channel, operation, e)
            return None

        self._metrics.mutations_total.inc(operation=operation, status="accepted")
        self.dispatcher.broadcast(session, snapshot)
        return snapshot

    def _session_for(self, channel: Channel, request: MutationRequest):
        session_id = request.session_id or channel.session_id
        if not session_id:
            raise AccessDeniedError("Join a session before changing its cart")

        session = self.registry.get(session_id)
        if channel.session_id != session_id or channel not in session.channels:
            raise AccessDeniedError(f"Channel has not joined session {session_id}")
        return session

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def close_session(self, session_id: str) -> bool:
        """Close a session (checkout) and tell its channels."""
        try:
            session = self.registry.get(session_id)
        except SessionNotFoundError:
            return False

        async with session.lock:
            self.registry.close(session_id)

        payload = {
            "session_id": session_id,
            "version": session.version,
            "closed_at": datetime.now(timezone.utc).isoformat(),
        }
        await self.dispatcher.send_to_session(session, CartEvent.CLOSED, payload)
        # channels keep pointing at the closed id so their next mutation
        # is answered with SESSION_NOT_FOUND
        session.channels.clear()
        return True

    # ------------------------------------------------------------------ #
    # Routing
    # ------------------------------------------------------------------ #

    async def handle_message(self, channel: Channel, message: Any) -> None:
        """Route one decoded ``{"event": ..., "data": ...}`` frame."""
        if not isinstance(message, dict) or not isinstance(message.get("event"), str):
            await self.reporter.report_error(
                channel, "unknown", InvalidPayloadError("Frame must contain an event name")
            )
            return

        event = message["event"]
        data = message.get("data")

        if event in MUTATION_EVENTS:
            await self.handle_mutation(channel, MUTATION_EVENTS[event], data)

        elif event == CartEvent.JOIN.value:
            try:
                request = JoinRequest.parse(data)
            except InvalidPayloadError as e:
                await self.reporter.report_error(channel, "join", e)
                return
            await self.join(channel, request.session_id, request.token)

        elif event == CartEvent.LEAVE.value:
            self.leave(channel)

        elif event == CartEvent.CLOSE.value:
            await self._handle_close_request(channel)

        elif event == CartEvent.PING.value:
            await channel.send(
                CartEvent.PONG.value, {"timestamp": datetime.now(timezone.utc).isoformat()}
            )

        else:
            # event names come from the client; keep them out of metric labels
            await self.reporter.report_error(
                channel, "unknown", InvalidPayloadError(f"Unknown event: {event[:64]}")
            )

    async def _handle_close_request(self, channel: Channel) -> None:
        if not self.registry.policy.allow_client_close:
            await self.reporter.report_error(
                channel, "close", AccessDeniedError("Clients may not close sessions")
            )
            return
        if channel.session_id is None:
            await self.reporter.report_error(
                channel, "close", AccessDeniedError("Join a session before closing it")
            )
            return
        session_id = channel.session_id
        if not await self.close_session(session_id):
            await self.reporter.report_error(channel, "close", SessionNotFoundError(session_id))

    def get_stats(self) -> dict[str, Any]:
        """Aggregate counts only; session ids are not published."""
        stats = self.registry.get_stats()
        return {
            "total_sessions": stats["total_sessions"],
            "total_channels": stats["total_channels"],
            "pending_deliveries": self.dispatcher.pending,
        }
