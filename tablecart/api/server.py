"""aiohttp application factory for the cart synchronization service."""
from __future__ import annotations

import logging

from aiohttp import web

from tablecart import __version__
from tablecart.core.config import Settings
from tablecart.core.metrics import metrics as app_metrics
from tablecart.core.websocket import setup_websocket_routes
from tablecart.domain.catalog import Catalog, InMemoryCatalog
from tablecart.services.cart_service import CartService
from tablecart.services.cart_sync import CartSyncService
from tablecart.services.session_registry import SessionRegistry

logger = logging.getLogger(__name__)


def build_cart_sync(settings: Settings, catalog: Catalog) -> CartSyncService:
    """Wire registry, state machine, dispatcher and reporter."""
    registry = SessionRegistry(settings.sessions)
    cart_service = CartService(catalog, max_line_quantity=settings.max_line_quantity)
    return CartSyncService(registry, cart_service)


def create_app(
    settings: Settings | None = None,
    catalog: Catalog | None = None,
    sync: CartSyncService | None = None,
) -> web.Application:
    """Create aiohttp web application with cart websocket and ops endpoints."""
    settings = settings or Settings()
    if catalog is None:
        catalog = (
            InMemoryCatalog.from_file(settings.catalog_path)
            if settings.catalog_path
            else InMemoryCatalog()
        )
    sync = sync or build_cart_sync(settings, catalog)

    app = web.Application()
    setup_websocket_routes(
        app, sync, queue_size=settings.channel_queue_size, heartbeat=settings.ws_heartbeat
    )

    async def health_check(request: web.Request) -> web.Response:
        stats = sync.registry.get_stats()
        return web.json_response(
            {
                "status": "ok",
                "service": "tablecart",
                "version": __version__,
                "sessions": stats["total_sessions"],
                "channels": stats["total_channels"],
            }
        )

    async def metrics_prom(request: web.Request) -> web.Response:
        """Return Prometheus-style metrics."""
        text = app_metrics.export_prometheus()
        return web.Response(text=text, content_type="text/plain", charset="utf-8")

    app.router.add_get("/health", health_check)
    app.router.add_get("/metrics", metrics_prom)

    async def on_startup(app: web.Application) -> None:
        await sync.registry.start()
        logger.info("Cart sync service started")

    async def on_cleanup(app: web.Application) -> None:
        await sync.dispatcher.drain()
        await sync.registry.stop()
        logger.info("Cart sync service stopped")

    app.on_startup.append(on_startup)
    app.on_cleanup.append(on_cleanup)

    return app
