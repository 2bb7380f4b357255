"""Interactive terminal attached to the local chat channel.

Lines typed on stdin are submitted to the default group; replies and errors
are printed. ``/new`` resets the session, ``/compact`` compacts it and
``/quit`` stops the app.
"""

from __future__ import annotations

import asyncio
import sys
from collections.abc import Callable

from switchboard.channels.local import LocalChatChannel
from switchboard.config import DEFAULT_GROUP_ID
from switchboard.coordinator import Coordinator
from switchboard.event_bus import ContextCompactedEvent, ErrorEvent, SessionResetEvent


class Console:
    def __init__(self, coordinator: Coordinator, on_quit: Callable[[], None]) -> None:
        self._coordinator = coordinator
        self._on_quit = on_quit
        self._unsubscribers: list[Callable[[], None]] = []

    def _print(self, text: str) -> None:
        print(text, flush=True)

    def _show_reply(self, group_id: str, text: str) -> None:
        self._print(f"{self._coordinator.config.assistant_name}: {text}")

    def attach(self) -> None:
        bus = self._coordinator.bus
        self._unsubscribers += [
            bus.subscribe(ErrorEvent, lambda e: self._print(f"! {e.error}")),
            bus.subscribe(SessionResetEvent, lambda e: self._print("(new session)")),
            bus.subscribe(ContextCompactedEvent, lambda e: self._print("(context compacted)")),
        ]
        local = self._coordinator.registry.get(self._coordinator.registry.builtin_kind)
        if isinstance(local, LocalChatChannel):
            self._unsubscribers.append(local.on_display(self._show_reply))

    def detach(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers.clear()

    async def handle_line(self, line: str) -> None:
        text = line.strip()
        match text:
            case "":
                return
            case "/quit":
                self._on_quit()
            case "/new":
                await self._coordinator.new_session(DEFAULT_GROUP_ID)
            case "/compact":
                await self._coordinator.compact(DEFAULT_GROUP_ID)
            case _:
                await self._coordinator.submit_message(text, DEFAULT_GROUP_ID)

    async def run(self) -> None:
        loop = asyncio.get_running_loop()
        reader = asyncio.StreamReader()
        await loop.connect_read_pipe(lambda: asyncio.StreamReaderProtocol(reader), sys.stdin)
        self.attach()
        try:
            while line := await reader.readline():
                await self.handle_line(line.decode(errors="replace"))
            self._on_quit()
        finally:
            self.detach()
