"""Tests for the queued WebSocket channel writer."""
import asyncio

import pytest

from tablecart.core.websocket import ChannelClosedError, WebSocketChannel


class StalledSocket:
    """Stands in for a WebSocketResponse whose client stopped reading."""

    def __init__(self) -> None:
        self.closed = False
        self.close_calls = 0
        self.sent: list[dict] = []
        self.unblock = asyncio.Event()

    async def send_json(self, data) -> None:
        await self.unblock.wait()
        self.sent.append(data)

    async def close(self) -> None:
        self.close_calls += 1
        self.closed = True


async def wait_until(predicate, attempts: int = 50) -> None:
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)


async def test_frames_are_written_in_order():
    ws = StalledSocket()
    ws.unblock.set()
    channel = WebSocketChannel(ws, queue_size=10)
    channel.start()

    for version in range(3):
        await channel.send("cart:updated", {"version": version})
    await channel.close()

    assert [frame["data"]["version"] for frame in ws.sent] == [0, 1, 2]
    assert ws.closed


async def test_overflow_closes_the_socket():
    ws = StalledSocket()
    channel = WebSocketChannel(ws, queue_size=1)
    channel.start()

    await channel.send("cart:updated", {"version": 1})
    await asyncio.sleep(0)  # writer picks it up and stalls
    await channel.send("cart:updated", {"version": 2})

    with pytest.raises(ChannelClosedError):
        await channel.send("cart:updated", {"version": 3})

    await wait_until(lambda: ws.close_calls > 0)
    assert ws.close_calls == 1
    assert channel.closed

    with pytest.raises(ChannelClosedError):
        await channel.send("cart:updated", {"version": 4})

    await channel.close()
    assert ws.close_calls == 1
