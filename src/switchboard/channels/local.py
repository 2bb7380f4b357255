"""Local chat channel: the built-in, always-configured conversation.

Text typed into the console (or submitted by tests) arrives through
``submit``; replies and typing changes go to the registered display
listeners.
"""

from __future__ import annotations

import inspect
from collections.abc import Callable, Mapping
from typing import Any

from switchboard.config import DEFAULT_GROUP_ID
from switchboard.logger import logger
from switchboard.plugin.hookspecs import ChannelSpec, hookimpl
from switchboard.types import InboundMessage, OnInbound
from switchboard.utils import generate_message_id, now_iso

LOCAL_KIND = "local"
LOCAL_PREFIX = "br:"

DisplayListener = Callable[[str, str], Any]
TypingListener = Callable[[str, bool], Any]


class LocalChatChannel:
    kind = LOCAL_KIND

    def __init__(self, sender: str = "You") -> None:
        self.sender = sender
        self._on_inbound: OnInbound | None = None
        self._display: list[DisplayListener] = []
        self._typing: list[TypingListener] = []
        self._started = False

    def on_message(self, callback: OnInbound) -> None:
        self._on_inbound = callback

    def on_display(self, listener: DisplayListener) -> Callable[[], None]:
        self._display.append(listener)
        return lambda: self._display.remove(listener)

    def on_typing(self, listener: TypingListener) -> Callable[[], None]:
        self._typing.append(listener)
        return lambda: self._typing.remove(listener)

    async def start(self) -> None:
        self._started = True

    async def stop(self) -> None:
        self._started = False

    def is_configured(self) -> bool:
        return True

    async def submit(self, text: str, group_id: str = DEFAULT_GROUP_ID) -> InboundMessage:
        """Hand a user message to the coordinator as if it arrived over the wire."""
        if self._on_inbound is None:
            raise RuntimeError("Local channel has no inbound callback registered")
        msg = InboundMessage(
            id=generate_message_id("local"),
            group_id=group_id,
            sender=self.sender,
            content=text,
            timestamp=now_iso(),
            channel=self.kind,
        )
        await self._on_inbound(msg)
        return msg

    async def send(self, group_id: str, text: str) -> None:
        for listener in list(self._display):
            result = listener(group_id, text)
            if inspect.isawaitable(result):
                await result

    def set_typing(self, group_id: str, typing: bool) -> None:
        for listener in list(self._typing):
            try:
                listener(group_id, typing)
            except Exception:
                logger.exception("Typing listener failed", group_id=group_id)


def _build_local(credentials: Mapping[str, str]) -> LocalChatChannel:
    return LocalChatChannel()


class LocalChannelPlugin:
    """Built-in plugin providing the local chat channel."""

    @hookimpl
    def switchboard_channel_spec(self) -> ChannelSpec:
        return ChannelSpec(
            kind=LOCAL_KIND,
            prefix=LOCAL_PREFIX,
            factory=_build_local,
            optional=False,
        )
