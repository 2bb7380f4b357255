"""Tests for the EventBus pub/sub system."""

from __future__ import annotations

import asyncio

import pytest

from switchboard.event_bus import (
    ErrorEvent,
    EventBus,
    ReadyEvent,
    SessionResetEvent,
    StateChangeEvent,
)
from switchboard.types import CoordinatorState


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


class TestEventBus:
    def test_listener_receives_event_of_its_type_only(self, bus: EventBus) -> None:
        received: list[object] = []
        bus.subscribe(ErrorEvent, received.append)

        bus.publish(ErrorEvent("br:main", "boom"))
        bus.publish(ReadyEvent())

        assert received == [ErrorEvent("br:main", "boom")]

    def test_delivery_is_synchronous(self, bus: EventBus) -> None:
        received: list[object] = []
        bus.subscribe(StateChangeEvent, received.append)

        bus.publish(StateChangeEvent(CoordinatorState.THINKING))

        # No await between publish and assert.
        assert received == [StateChangeEvent(CoordinatorState.THINKING)]

    def test_unsubscribe_function(self, bus: EventBus) -> None:
        received: list[object] = []
        unsubscribe = bus.subscribe(ReadyEvent, received.append)

        unsubscribe()
        bus.publish(ReadyEvent())

        assert received == []

    def test_unsubscribe_unknown_listener_is_noop(self, bus: EventBus) -> None:
        bus.unsubscribe(ReadyEvent, lambda e: None)

    def test_failing_listener_does_not_block_others(self, bus: EventBus) -> None:
        received: list[object] = []

        def broken(event: ReadyEvent) -> None:
            raise RuntimeError("listener bug")

        bus.subscribe(ReadyEvent, broken)
        bus.subscribe(ReadyEvent, received.append)

        bus.publish(ReadyEvent())

        assert received == [ReadyEvent()]

    def test_nested_publish_is_depth_first(self, bus: EventBus) -> None:
        """A publish from inside a listener completes before the outer publish moves on."""
        order: list[str] = []

        def on_ready(event: ReadyEvent) -> None:
            order.append("ready-1")
            bus.publish(SessionResetEvent("br:main"))

        bus.subscribe(ReadyEvent, on_ready)
        bus.subscribe(ReadyEvent, lambda e: order.append("ready-2"))
        bus.subscribe(SessionResetEvent, lambda e: order.append("reset"))

        bus.publish(ReadyEvent())

        assert order == ["ready-1", "reset", "ready-2"]

    def test_subscribing_during_delivery_takes_effect_next_time(self, bus: EventBus) -> None:
        late: list[object] = []

        def subscribe_late(event: ReadyEvent) -> None:
            bus.subscribe(ReadyEvent, late.append)

        bus.subscribe(ReadyEvent, subscribe_late)
        bus.publish(ReadyEvent())
        assert late == []

        bus.publish(ReadyEvent())
        assert len(late) == 1

    async def test_async_listener_is_scheduled(self, bus: EventBus) -> None:
        received: list[object] = []

        async def listener(event: ErrorEvent) -> None:
            received.append(event)

        bus.subscribe(ErrorEvent, listener)
        bus.publish(ErrorEvent("tg:1", "nope"))

        await asyncio.sleep(0.01)

        assert received == [ErrorEvent("tg:1", "nope")]

    async def test_failing_async_listener_is_contained(self, bus: EventBus) -> None:
        received: list[object] = []

        async def broken(event: ReadyEvent) -> None:
            raise ValueError("async bug")

        bus.subscribe(ReadyEvent, broken)
        bus.subscribe(ReadyEvent, received.append)

        bus.publish(ReadyEvent())
        await asyncio.sleep(0.01)

        assert received == [ReadyEvent()]
