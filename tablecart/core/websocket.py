"""
WebSocket transport for cart channels.

Each connection becomes a ``WebSocketChannel`` whose outbound frames go
through a bounded queue drained by one writer task, so frames reach the
client in the order they were produced and a slow client never blocks the
sender. A full queue marks the channel as failed.
"""
import asyncio
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from aiohttp import WSMsgType, web
from aiohttp.client_exceptions import ClientConnectionResetError

from tablecart.core.constants import CHANNEL_QUEUE_SIZE, WS_HEARTBEAT_SECONDS
from tablecart.core.exceptions import InvalidPayloadError
from tablecart.core.metrics import metrics
from tablecart.services.broadcast import Channel
from tablecart.services.cart_sync import CartSyncService

logger = logging.getLogger(__name__)

CART_SYNC_KEY = web.AppKey("cart_sync", CartSyncService)
QUEUE_SIZE_KEY = web.AppKey("channel_queue_size", int)
HEARTBEAT_KEY = web.AppKey("ws_heartbeat", int)


class ChannelClosedError(ConnectionError):
    """Frame could not be queued for a channel."""


class WebSocketChannel(Channel):
    """Cart channel backed by an aiohttp WebSocket response."""

    def __init__(self, ws: web.WebSocketResponse, queue_size: int = CHANNEL_QUEUE_SIZE):
        self.ws = ws
        self.channel_id = uuid.uuid4().hex
        self.session_id: str | None = None
        self.connected_at = datetime.now(timezone.utc)
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=queue_size)
        self._writer: asyncio.Task | None = None
        self._failed = False

    @property
    def closed(self) -> bool:
        return self._failed or self.ws.closed

    def start(self) -> None:
        if self._writer is None:
            self._writer = asyncio.create_task(self._write_loop())

    async def send(self, event: str, payload: dict[str, Any]) -> None:
        if self.closed:
            raise ChannelClosedError(f"channel {self.channel_id} is closed")
        try:
            self._queue.put_nowait({"event": event, "data": payload})
        except asyncio.QueueFull:
            self._abort()
            raise ChannelClosedError(f"channel {self.channel_id} outbound queue is full")

    def _abort(self) -> None:
        """Give up on a client that cannot keep up; the writer closes the socket."""
        self._failed = True
        logger.warning(f"Channel {self.channel_id} fell behind, closing it")
        if self._writer is not None and not self._writer.done():
            self._writer.cancel()

    async def _write_loop(self) -> None:
        try:
            while True:
                message = await self._queue.get()
                if message is None:
                    break
                try:
                    await self.ws.send_json(message)
                except (ClientConnectionResetError, ConnectionError, RuntimeError) as e:
                    logger.warning(f"Write to channel {self.channel_id} failed: {e}")
                    self._failed = True
                    break
        finally:
            if self._failed and not self.ws.closed:
                await self.ws.close()

    async def close(self) -> None:
        """Flush queued frames and stop the writer."""
        if self._writer is not None:
            if not self._writer.done():
                try:
                    self._queue.put_nowait(None)
                except asyncio.QueueFull:
                    self._writer.cancel()
            try:
                await self._writer
            except asyncio.CancelledError:
                pass
        if not self.ws.closed:
            await self.ws.close()


async def cart_websocket_handler(request: web.Request) -> web.WebSocketResponse:
    """
    WebSocket endpoint for cart synchronization.

    Query params:
    - session_id: join this session right after connecting (optional)
    - token: session access token (optional, also ``X-Session-Token`` header)

    Frames are JSON objects ``{"event": ..., "data": {...}}``.
    """
    ws = web.WebSocketResponse(heartbeat=request.app[HEARTBEAT_KEY])
    try:
        await ws.prepare(request)
    except ClientConnectionResetError:
        return ws

    sync = request.app[CART_SYNC_KEY]
    channel = WebSocketChannel(ws, queue_size=request.app[QUEUE_SIZE_KEY])
    channel.start()
    metrics.channels_connected.inc()
    logger.info(f"Cart channel connected: {channel.channel_id}")

    session_id = request.query.get("session_id")
    if session_id:
        token = request.query.get("token") or request.headers.get("X-Session-Token")
        await sync.join(channel, session_id, token)

    try:
        async for msg in ws:
            if msg.type == WSMsgType.TEXT:
                try:
                    data = json.loads(msg.data)
                except json.JSONDecodeError:
                    await sync.reporter.report_error(
                        channel, "unknown", InvalidPayloadError("Invalid JSON")
                    )
                    continue
                await sync.handle_message(channel, data)

            elif msg.type == WSMsgType.ERROR:
                logger.error(f"WebSocket error: {ws.exception()}")
                break

            if channel.closed:
                break

    except Exception as e:
        logger.error(f"Cart websocket handler error: {e}")

    finally:
        sync.disconnect(channel)
        metrics.channels_connected.dec()
        try:
            await channel.close()
        except ClientConnectionResetError:
            pass

    return ws


async def ws_stats(request: web.Request) -> web.Response:
    return web.json_response(request.app[CART_SYNC_KEY].get_stats())


def setup_websocket_routes(
    app: web.Application,
    sync: CartSyncService,
    queue_size: int = CHANNEL_QUEUE_SIZE,
    heartbeat: int = WS_HEARTBEAT_SECONDS,
) -> None:
    """Add cart WebSocket routes to aiohttp app."""
    app[CART_SYNC_KEY] = sync
    app[QUEUE_SIZE_KEY] = queue_size
    app[HEARTBEAT_KEY] = heartbeat
    app.router.add_get("/ws/cart", cart_websocket_handler)
    app.router.add_get("/ws/stats", ws_stats)


__all__ = [
    "CART_SYNC_KEY",
    "ChannelClosedError",
    "WebSocketChannel",
    "cart_websocket_handler",
    "setup_websocket_routes",
]
