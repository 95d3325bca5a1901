"""Tests for snapshot fan-out and sender-scoped errors."""
from __future__ import annotations

import asyncio

from conftest import FakeChannel
from tablecart.core.exceptions import LineNotFoundError
from tablecart.services.broadcast import BroadcastDispatcher, ErrorReporter


class BlockingChannel(FakeChannel):
    """Channel whose sends hang until released."""

    def __init__(self, channel_id: str) -> None:
        super().__init__(channel_id)
        self.release = asyncio.Event()

    async def send(self, event, payload):
        await self.release.wait()
        await super().send(event, payload)


async def test_broadcast_reaches_every_channel_with_identical_payload(registry, fresh_metrics):
    dispatcher = BroadcastDispatcher(registry, fresh_metrics)
    channels = [FakeChannel(name) for name in ("sender", "phone", "tablet")]
    for channel in channels:
        session = registry.subscribe("t1", channel)
    snapshot = session.commit({})

    assert dispatcher.broadcast(session, snapshot) == 3
    await dispatcher.drain()

    payloads = [channel.payloads("cart:updated") for channel in channels]
    assert all(len(p) == 1 for p in payloads)
    assert payloads[0][0] == payloads[1][0] == payloads[2][0]
    assert payloads[0][0]["version"] == 1
    assert fresh_metrics.broadcasts_total.get(status="sent") == 3


async def test_failing_channel_is_dropped_without_affecting_others(registry, fresh_metrics):
    dispatcher = BroadcastDispatcher(registry, fresh_metrics)
    good, broken = FakeChannel("good"), FakeChannel("broken", fail=True)
    registry.subscribe("t1", good)
    session = registry.subscribe("t1", broken)
    broken.session_id = "t1"

    dispatcher.broadcast(session, session.commit({}))
    await dispatcher.drain()

    assert len(good.payloads("cart:updated")) == 1
    assert session.channels == {good}
    assert broken.session_id is None
    assert fresh_metrics.broadcasts_total.get(status="failed") == 1


async def test_slow_channel_does_not_block_others(registry):
    dispatcher = BroadcastDispatcher(registry)
    slow, fast = BlockingChannel("slow"), FakeChannel("fast")
    registry.subscribe("t1", slow)
    session = registry.subscribe("t1", fast)

    dispatcher.broadcast(session, session.commit({}))
    await asyncio.sleep(0)
    await asyncio.sleep(0)

    assert len(fast.payloads("cart:updated")) == 1
    assert slow.sent == []
    assert dispatcher.pending == 1

    slow.release.set()
    await dispatcher.drain()
    assert len(slow.payloads("cart:updated")) == 1


async def test_broadcast_preserves_order_per_channel(registry):
    dispatcher = BroadcastDispatcher(registry)
    channel = FakeChannel("a")
    session = registry.subscribe("t1", channel)

    for _ in range(5):
        dispatcher.broadcast(session, session.commit({}))
    await dispatcher.drain()

    assert channel.versions() == [1, 2, 3, 4, 5]


async def test_error_reporter_targets_sender_only(registry, fresh_metrics):
    reporter = ErrorReporter(fresh_metrics)
    sender, other = FakeChannel("sender"), FakeChannel("other")
    registry.subscribe("t1", sender)
    registry.subscribe("t1", other)

    assert await reporter.report_error(sender, "remove", LineNotFoundError("burger"))

    assert sender.sent == [
        (
            "cart:error",
            {"operation": "remove", "code": "LINE_NOT_FOUND", "message": "Cart line burger not found"},
        )
    ]
    assert other.sent == []
    assert fresh_metrics.errors_total.get(operation="remove", code="LINE_NOT_FOUND") == 1


async def test_error_reporter_swallows_delivery_failure():
    reporter = ErrorReporter()
    assert not await reporter.report_error(
        FakeChannel("gone", fail=True), "add", LineNotFoundError("x")
    )


async def test_blocked_send_does_not_reorder_later_snapshots(registry):
    dispatcher = BroadcastDispatcher(registry)
    slow = BlockingChannel("slow")
    session = registry.subscribe("t1", slow)

    dispatcher.broadcast(session, session.commit({}))
    await asyncio.sleep(0)
    dispatcher.broadcast(session, session.commit({}))
    dispatcher.broadcast(session, session.commit({}))
    assert dispatcher.pending == 1

    slow.release.set()
    await dispatcher.drain()

    assert slow.versions() == [1, 2, 3]
    assert dispatcher.pending == 0


async def test_failed_channel_drops_its_queued_frames(registry, fresh_metrics):
    dispatcher = BroadcastDispatcher(registry, fresh_metrics)
    broken = FakeChannel("broken", fail=True)
    session = registry.subscribe("t1", broken)

    dispatcher.broadcast(session, session.commit({}))
    dispatcher.broadcast(session, session.commit({}))
    await dispatcher.drain()

    assert session.channels == set()
    assert fresh_metrics.broadcasts_total.get(status="failed") == 1
