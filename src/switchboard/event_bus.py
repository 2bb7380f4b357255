"""Synchronous in-process event bus.

Exposes coordinator state to observers (console, UIs) without coupling the
coordinator to any renderer. The event schema is closed: every event is one
of the dataclasses below and listeners subscribe by class.

Delivery is synchronous and depth-first: a listener that publishes from
inside its handler runs the nested delivery before the outer publish
returns. A failing listener is logged and skipped. Listeners that return a
coroutine are scheduled as background tasks.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeAlias

from switchboard.logger import logger
from switchboard.types import CoordinatorState, StoredMessage
from switchboard.utils import create_background_task
from switchboard.worker.protocol import ThinkingLogEntry, TokenUsage

# --- Event types ---


@dataclass(frozen=True)
class StateChangeEvent:
    state: CoordinatorState


@dataclass(frozen=True)
class MessageEvent:
    """A message was stored (inbound, synthetic or reply)."""

    message: StoredMessage


@dataclass(frozen=True)
class TypingEvent:
    group_id: str
    typing: bool


@dataclass(frozen=True)
class ToolActivityEvent:
    group_id: str
    tool: str
    status: str


@dataclass(frozen=True)
class ThinkingLogEvent:
    entry: ThinkingLogEntry


@dataclass(frozen=True)
class ErrorEvent:
    """User-visible precondition failure (nothing was dispatched)."""

    group_id: str
    error: str


@dataclass(frozen=True)
class ReadyEvent:
    pass


@dataclass(frozen=True)
class SessionResetEvent:
    group_id: str


@dataclass(frozen=True)
class ContextCompactedEvent:
    group_id: str
    summary: str


@dataclass(frozen=True)
class TokenUsageEvent:
    usage: TokenUsage


Event: TypeAlias = (
    StateChangeEvent
    | MessageEvent
    | TypingEvent
    | ToolActivityEvent
    | ThinkingLogEvent
    | ErrorEvent
    | ReadyEvent
    | SessionResetEvent
    | ContextCompactedEvent
    | TokenUsageEvent
)
Listener: TypeAlias = Callable[[Any], Any]


class EventBus:
    def __init__(self) -> None:
        self._listeners: defaultdict[type, list[Listener]] = defaultdict(list)

    def subscribe(self, event_type: type, listener: Listener) -> Callable[[], None]:
        """Subscribe to an event type. Returns an unsubscribe function."""
        self._listeners[event_type].append(listener)

        def _unsubscribe() -> None:
            self.unsubscribe(event_type, listener)

        return _unsubscribe

    def unsubscribe(self, event_type: type, listener: Listener) -> None:
        with contextlib.suppress(ValueError):
            self._listeners[event_type].remove(listener)

    def publish(self, event: Event) -> None:
        """Deliver *event* to every listener registered right now."""
        for listener in list(self._listeners[type(event)]):
            try:
                result = listener(event)
            except Exception:
                logger.exception("EventBus listener error", event=type(event).__name__)
                continue
            if inspect.isawaitable(result):
                create_background_task(
                    _await_listener(result, type(event).__name__),
                    name=f"event-{type(event).__name__}",
                )


async def _await_listener(awaitable: Any, event_name: str) -> None:
    try:
        await awaitable
    except asyncio.CancelledError:
        raise
    except Exception:
        logger.exception("EventBus listener error", event=event_name)
