"""Tests for the data channel adapter."""

from __future__ import annotations

from typing import List

import pytest

from lanlink.rtc.channel import ChannelAdapter, ChannelReadiness

from conftest import FakeDataChannel


def test_send_before_open_reports_false() -> None:
    channel = FakeDataChannel()
    adapter = ChannelAdapter(channel)

    assert adapter.readiness is ChannelReadiness.CONNECTING
    assert adapter.send("hello") is False
    assert channel.sent == []


@pytest.mark.asyncio
async def test_open_event_makes_channel_usable() -> None:
    seen: List[ChannelReadiness] = []

    async def listener(readiness: ChannelReadiness) -> None:
        seen.append(readiness)

    channel = FakeDataChannel()
    adapter = ChannelAdapter(channel, listener=listener)
    await channel.open()

    assert adapter.is_open
    assert adapter.send("hello") is True
    assert channel.sent == ["hello"]
    assert seen == [ChannelReadiness.OPEN]


@pytest.mark.asyncio
async def test_open_is_idempotent() -> None:
    seen: List[ChannelReadiness] = []

    async def listener(readiness: ChannelReadiness) -> None:
        seen.append(readiness)

    channel = FakeDataChannel()
    adapter = ChannelAdapter(channel, listener=listener)
    await channel.open()
    await channel.emit("open")

    assert adapter.on_open() is False
    assert adapter.readiness is ChannelReadiness.OPEN
    assert seen == [ChannelReadiness.OPEN]


def test_channel_handed_over_open() -> None:
    adapter = ChannelAdapter(FakeDataChannel(ready_state="open"))
    assert adapter.is_open


@pytest.mark.asyncio
async def test_close_is_absorbing() -> None:
    channel = FakeDataChannel(ready_state="open")
    adapter = ChannelAdapter(channel)
    await channel.emit("close")

    assert adapter.readiness is ChannelReadiness.CLOSED
    assert adapter.on_open() is False
    assert adapter.send("late") is False


def test_engine_refusing_send_is_not_raised() -> None:
    channel = FakeDataChannel(ready_state="open")
    adapter = ChannelAdapter(channel)
    channel.readyState = "closing"

    assert adapter.send("x") is False


@pytest.mark.asyncio
async def test_messages_go_to_current_handler_only() -> None:
    channel = FakeDataChannel(ready_state="open")
    adapter = ChannelAdapter(channel)
    first: List[str] = []
    second: List[str] = []

    adapter.set_handler(first.append)
    await channel.emit("message", "one")
    adapter.set_handler(second.append)
    await channel.emit("message", "two")
    await channel.emit("message", b"three")

    assert first == ["one"]
    assert second == ["two", "three"]


@pytest.mark.asyncio
async def test_message_without_handler_is_dropped() -> None:
    channel = FakeDataChannel(ready_state="open")
    adapter = ChannelAdapter(channel)
    await channel.emit("message", "nobody listens")

    received: List[str] = []
    adapter.set_handler(received.append)
    assert received == []


@pytest.mark.asyncio
async def test_failing_handler_does_not_break_delivery() -> None:
    channel = FakeDataChannel(ready_state="open")
    adapter = ChannelAdapter(channel)
    received: List[str] = []

    def handler(message: str) -> None:
        received.append(message)
        raise RuntimeError("boom")

    adapter.set_handler(handler)
    await channel.emit("message", "a")
    await channel.emit("message", "b")

    assert received == ["a", "b"]


def test_close_closes_underlying_channel() -> None:
    channel = FakeDataChannel(ready_state="open")
    adapter = ChannelAdapter(channel)
    adapter.close()

    assert channel.readyState == "closed"
    assert adapter.readiness is ChannelReadiness.CLOSED
