"""Shared pytest fixtures for cart synchronization tests."""
from __future__ import annotations

from decimal import Decimal
from typing import Any

import pytest

from tablecart.core.config import SessionPolicy
from tablecart.core.metrics import MetricsRegistry
from tablecart.domain.catalog import CustomizationOption, InMemoryCatalog, MenuItem
from tablecart.services.broadcast import Channel
from tablecart.services.cart_service import CartService
from tablecart.services.cart_sync import CartSyncService
from tablecart.services.session_registry import SessionRegistry


class FakeChannel(Channel):
    """In-memory channel that records everything sent to it."""

    def __init__(self, channel_id: str = "channel", fail: bool = False) -> None:
        self.channel_id = channel_id
        self.session_id: str | None = None
        self.fail = fail
        self.sent: list[tuple[str, dict[str, Any]]] = []

    @property
    def closed(self) -> bool:
        return self.fail

    async def send(self, event: str, payload: dict[str, Any]) -> None:
        if self.fail:
            raise ConnectionError("client went away")
        self.sent.append((event, payload))

    def payloads(self, event: str) -> list[dict[str, Any]]:
        return [payload for name, payload in self.sent if name == event]

    def versions(self) -> list[int]:
        return [payload["version"] for payload in self.payloads("cart:updated")]


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def catalog() -> InMemoryCatalog:
    return InMemoryCatalog(
        [
            MenuItem(
                id="burger",
                name="Classic Burger",
                base_price=Decimal("8.50"),
                options=[
                    CustomizationOption(id="cheese", name="Extra cheese", price_delta=Decimal("1.00")),
                    CustomizationOption(id="bacon", name="Bacon", price_delta=Decimal("1.50")),
                    CustomizationOption(id="truffle", name="Truffle mayo", available=False),
                ],
            ),
            MenuItem(id="fries", name="Fries", base_price=Decimal("3.25")),
            MenuItem(id="soup", name="Soup of the day", base_price=Decimal("5.00"), available=False),
        ]
    )


@pytest.fixture()
def fresh_metrics() -> MetricsRegistry:
    return MetricsRegistry()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def registry(clock: FakeClock, fresh_metrics: MetricsRegistry) -> SessionRegistry:
    return SessionRegistry(
        SessionPolicy(idle_timeout=600, cleanup_interval=1, closed_history=10),
        clock=clock,
        metrics=fresh_metrics,
    )


@pytest.fixture()
def cart_service(catalog: InMemoryCatalog) -> CartService:
    return CartService(catalog, max_line_quantity=20)


@pytest.fixture()
def sync(
    registry: SessionRegistry, cart_service: CartService, fresh_metrics: MetricsRegistry
) -> CartSyncService:
    return CartSyncService(registry, cart_service, metrics=fresh_metrics)


@pytest.fixture()
async def aiohttp_client():
    """Minimal aiohttp_client fixture to avoid pytest-aiohttp dependency."""
    clients: list[object] = []

    async def _make_client(app):
        from aiohttp.test_utils import TestClient, TestServer

        server = TestServer(app)
        client = TestClient(server)
        await client.start_server()
        clients.append(client)
        return client

    try:
        yield _make_client
    finally:
        for client in clients:
            await client.close()
