"""
Session registry: owns every cart Session in the process.

Handles:
- Creating sessions on first reference
- Channel subscription per session
- Explicit close (checkout)
- Idle eviction of sessions nobody is connected to
"""
from __future__ import annotations

import asyncio
import logging
import time
from collections import OrderedDict
from typing import Any, Callable

from tablecart.core.config import SessionPolicy
from tablecart.core.exceptions import AccessDeniedError, SessionNotFoundError
from tablecart.core.metrics import MetricsRegistry, metrics as default_metrics
from tablecart.domain.cart import Session

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Maps session ids to sessions and their subscribed channels."""

    def __init__(
        self,
        policy: SessionPolicy | None = None,
        clock: Callable[[], float] = time.monotonic,
        metrics: MetricsRegistry | None = None,
    ):
        self.policy = policy or SessionPolicy()
        self._clock = clock
        self._metrics = metrics or default_metrics
        self._sessions: dict[str, Session] = {}
        self._closed: OrderedDict[str, float] = OrderedDict()
        self._cleanup_task: asyncio.Task | None = None

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, session_id: str) -> Session:
        """Look up an existing session without creating it."""
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def get_or_create(self, session_id: str, token: str | None = None) -> Session:
        if session_id in self._closed:
            raise SessionNotFoundError(session_id)

        session = self._sessions.get(session_id)
        if session is None:
            session = Session(session_id=session_id, token=token, last_activity=self._clock())
            self._sessions[session_id] = session
            self._metrics.sessions_active.set(len(self._sessions))
            logger.info(f"Session created: {session_id}")
            return session

        if session.token is not None and token != session.token:
            logger.warning(f"Rejected session token for session {session_id}")
            raise AccessDeniedError("Invalid session token for this cart")
        return session

    def subscribe(self, session_id: str, channel: Any, token: str | None = None) -> Session:
        session = self.get_or_create(session_id, token)
        session.channels.add(channel)
        session.touch(self._clock())
        logger.info(f"Channel joined session {session_id}, total={len(session.channels)}")
        return session

    def unsubscribe(self, session_id: str, channel: Any) -> None:
        session = self._sessions.get(session_id)
        if session is None or channel not in session.channels:
            return
        session.channels.discard(channel)
        # idle time is measured from the moment the last channel left
        session.touch(self._clock())
        logger.info(f"Channel left session {session_id}, remaining={len(session.channels)}")

    def close(self, session_id: str) -> Session | None:
        """Close a session for good; its id cannot be recreated afterwards."""
        session = self._sessions.pop(session_id, None)
        if self.policy.closed_history > 0:
            self._closed[session_id] = self._clock()
            while len(self._closed) > self.policy.closed_history:
                self._closed.popitem(last=False)

        if session is None:
            return None

        session.closed = True
        self._metrics.sessions_active.set(len(self._sessions))
        self._metrics.sessions_evicted.inc(reason="closed")
        logger.info(f"Session closed: {session_id} at version {session.version}")
        return session

    def evict_idle(self, now: float | None = None) -> list[str]:
        """Drop sessions with no channels that have been idle too long."""
        if self.policy.idle_timeout <= 0:
            return []

        now = self._clock() if now is None else now
        expired = [
            session_id
            for session_id, session in self._sessions.items()
            if not session.channels and now - session.last_activity > self.policy.idle_timeout
        ]
        for session_id in expired:
            session = self._sessions.pop(session_id)
            session.closed = True
            self._metrics.sessions_evicted.inc(reason="idle")
            logger.info(f"Session evicted after idle timeout: {session_id}")

        if expired:
            self._metrics.sessions_active.set(len(self._sessions))
        return expired

    async def start(self) -> None:
        """Start the background cleanup loop."""
        if self._cleanup_task is None:
            self._cleanup_task = asyncio.create_task(self._cleanup_loop())
            logger.info("SessionRegistry cleanup loop started")

    async def stop(self) -> None:
        if self._cleanup_task:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass
            self._cleanup_task = None
        logger.info("SessionRegistry stopped")

    async def _cleanup_loop(self) -> None:
        while True:
            try:
                await asyncio.sleep(self.policy.cleanup_interval)
                self.evict_idle()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Session cleanup loop error: {e}")

    def get_stats(self) -> dict[str, Any]:
        return {
            "total_sessions": len(self._sessions),
            "total_channels": sum(len(s.channels) for s in self._sessions.values()),
            "sessions": {
                session_id: {"version": s.version, "channels": len(s.channels), "lines": len(s.lines)}
                for session_id, s in self._sessions.items()
            },
        }
