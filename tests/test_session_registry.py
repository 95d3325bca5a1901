"""Tests for session ownership, close and idle eviction."""
from __future__ import annotations

import asyncio

import pytest

from conftest import FakeChannel
from tablecart.core.config import SessionPolicy
from tablecart.core.exceptions import AccessDeniedError, SessionNotFoundError
from tablecart.services.session_registry import SessionRegistry


def test_get_or_create_returns_same_session(registry):
    first = registry.get_or_create("t1")
    second = registry.get_or_create("t1")
    assert first is second
    assert len(registry) == 1


def test_get_does_not_create(registry):
    with pytest.raises(SessionNotFoundError):
        registry.get("missing")
    assert "missing" not in registry


def test_token_is_checked_after_creation(registry):
    registry.get_or_create("t1", token="secret")
    assert registry.get_or_create("t1", token="secret").token == "secret"
    with pytest.raises(AccessDeniedError):
        registry.get_or_create("t1", token="guess")
    with pytest.raises(AccessDeniedError):
        registry.get_or_create("t1")


def test_subscribe_and_unsubscribe(registry):
    a, b = FakeChannel("a"), FakeChannel("b")
    registry.subscribe("t1", a)
    session = registry.subscribe("t1", b)
    assert session.channels == {a, b}

    registry.unsubscribe("t1", a)
    assert session.channels == {b}
    registry.unsubscribe("t1", a)
    registry.unsubscribe("other", b)
    assert session.channels == {b}


def test_closed_session_cannot_be_recreated(registry):
    registry.get_or_create("t1")
    session = registry.close("t1")

    assert session.closed
    with pytest.raises(SessionNotFoundError):
        registry.get("t1")
    with pytest.raises(SessionNotFoundError):
        registry.get_or_create("t1")


def test_closed_history_is_bounded(registry):
    for i in range(12):
        registry.get_or_create(f"s{i}")
        registry.close(f"s{i}")

    # history size is 10 in the fixture, so the oldest ids are forgotten
    assert registry.get_or_create("s0").version == 0
    with pytest.raises(SessionNotFoundError):
        registry.get_or_create("s11")


def test_idle_sessions_without_channels_are_evicted(registry, clock):
    registry.get_or_create("idle")
    registry.subscribe("busy", FakeChannel("a"))

    clock.advance(601)
    evicted = registry.evict_idle()

    assert evicted == ["idle"]
    assert "idle" not in registry
    assert "busy" in registry


def test_idle_time_starts_when_last_channel_leaves(registry, clock):
    channel = FakeChannel("a")
    registry.subscribe("t1", channel)
    clock.advance(10_000)
    registry.unsubscribe("t1", channel)

    clock.advance(300)
    assert registry.evict_idle() == []
    clock.advance(301)
    assert registry.evict_idle() == ["t1"]


def test_evicted_session_can_be_joined_again(registry, clock):
    registry.get_or_create("t1").version = 5
    clock.advance(601)
    registry.evict_idle()

    assert registry.get_or_create("t1").version == 0


def test_zero_idle_timeout_disables_eviction(clock):
    registry = SessionRegistry(SessionPolicy(idle_timeout=0), clock=clock)
    registry.get_or_create("t1")
    clock.advance(1_000_000)
    assert registry.evict_idle() == []


def test_stats(registry):
    registry.subscribe("t1", FakeChannel("a"))
    registry.subscribe("t1", FakeChannel("b"))
    registry.get_or_create("t2")

    stats = registry.get_stats()
    assert stats["total_sessions"] == 2
    assert stats["total_channels"] == 2
    assert stats["sessions"]["t1"]["channels"] == 2


async def test_cleanup_loop_evicts_in_background():
    registry = SessionRegistry(SessionPolicy(idle_timeout=1, cleanup_interval=1))
    session = registry.get_or_create("t1")
    session.last_activity -= 5

    registry.policy.cleanup_interval = 0.01
    await registry.start()
    try:
        for _ in range(100):
            if "t1" not in registry:
                break
            await asyncio.sleep(0.01)
    finally:
        await registry.stop()

    assert "t1" not in registry
