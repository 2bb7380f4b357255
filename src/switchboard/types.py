"""Data models for Switchboard."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Literal, Protocol, runtime_checkable


@dataclass(frozen=True)
class InboundMessage:
    """A message as produced by a channel adapter."""

    id: str
    group_id: str
    sender: str
    content: str
    timestamp: str  # ISO-8601, UTC
    channel: str  # channel kind, e.g. "local", "telegram"


@dataclass(frozen=True)
class StoredMessage:
    id: str
    group_id: str
    sender: str
    content: str
    timestamp: str
    channel: str
    is_from_me: bool = False
    is_trigger: bool = False

    @classmethod
    def from_inbound(cls, msg: InboundMessage, *, is_trigger: bool) -> StoredMessage:
        return cls(
            id=msg.id,
            group_id=msg.group_id,
            sender=msg.sender,
            content=msg.content,
            timestamp=msg.timestamp,
            channel=msg.channel,
            is_from_me=False,
            is_trigger=is_trigger,
        )


class CoordinatorState(StrEnum):
    IDLE = "idle"
    THINKING = "thinking"


@dataclass
class ScheduledTask:
    id: str
    group_id: str
    schedule: str  # cron expression
    prompt: str
    enabled: bool = True
    last_run: str | None = None
    created_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "group_id": self.group_id,
            "schedule": self.schedule,
            "prompt": self.prompt,
            "enabled": self.enabled,
            "last_run": self.last_run,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScheduledTask:
        """Build a task from a worker-supplied dict.

        Raises KeyError when a required field is missing.
        """
        return cls(
            id=str(data["id"]),
            group_id=str(data["group_id"]),
            schedule=str(data["schedule"]),
            prompt=str(data["prompt"]),
            enabled=bool(data.get("enabled", True)),
            last_run=data.get("last_run"),
            created_at=str(data.get("created_at") or ""),
        )


@dataclass
class Skill:
    id: str
    name: str
    content: str
    description: str = ""
    enabled: bool = True


@dataclass
class QueuedInvocation:
    """One pending entry of the coordinator's FIFO queue."""

    group_id: str
    content: str


@dataclass
class ConversationTurn:
    role: Literal["user", "assistant"]
    content: str

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


# --- Channel abstraction ---

OnInbound = Callable[[InboundMessage], Awaitable[None]]


@runtime_checkable
class ChannelAdapter(Protocol):
    """Contract every chat channel implements.

    ``start``/``stop`` must be idempotent. ``set_typing`` may be a no-op for
    platforms without typing indicators.
    """

    kind: str

    def on_message(self, callback: OnInbound) -> None: ...

    async def start(self) -> None: ...

    async def stop(self) -> None: ...

    async def send(self, group_id: str, text: str) -> None: ...

    def set_typing(self, group_id: str, typing: bool) -> None: ...

    def is_configured(self) -> bool: ...
