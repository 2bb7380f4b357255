"""Outbound routing and the shared text rules.

``ChannelRegistry`` maps a group id to the adapter responsible for it by
prefix (``tg:42`` → telegram); ids with no recognized prefix belong to the
built-in channel. Resolution never depends on anything but the prefix, and
the well-known prefixes stay reserved for their channel whether or not a
plugin for it is loaded.
"""

from __future__ import annotations

import re
from datetime import UTC
from typing import TYPE_CHECKING

from switchboard.logger import logger
from switchboard.utils import parse_iso

if TYPE_CHECKING:
    from switchboard.types import ChannelAdapter, StoredMessage


class ChannelUnavailableError(LookupError):
    """No channel of the requested kind is known or attached."""


# Innermost span only, so nested blocks unwind one level per pass.
_INTERNAL_TAG_RE = re.compile(r"<internal>(?:(?!<internal>)[\s\S])*?</internal>")


def strip_internal_tags(text: str) -> str:
    """Remove every <internal>...</internal> block, nested ones included, and trim."""
    while True:
        stripped = _INTERNAL_TAG_RE.sub("", text)
        if stripped == text:
            return stripped.strip()
        text = stripped


def escape_xml(s: str) -> str:
    return (
        s.replace("&", "&amp;")
        .replace("<", "&lt;")
        .replace(">", "&gt;")
        .replace('"', "&quot;")
        .replace("'", "&apos;")
    )


def format_timestamp(value: str) -> str:
    """UTC, millisecond precision, ``Z`` suffix. Sorts lexically."""
    dt = parse_iso(value).astimezone(UTC)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def format_messages_xml(messages: list[StoredMessage]) -> str:
    """Render history as a ``<messages>`` block for model context."""
    lines = [
        f'<message sender="{escape_xml(m.sender)}" time="{format_timestamp(m.timestamp)}">'
        f"{escape_xml(m.content)}</message>"
        for m in messages
    ]
    return f"<messages>\n{chr(10).join(lines)}\n</messages>"


RESERVED_ROUTES: tuple[tuple[str, str], ...] = (
    ("tg:", "telegram"),
    ("bsky:", "bluesky"),
    ("mx:", "matrix"),
)


class ChannelRegistry:
    """Prefix routing table plus the adapters currently attached to it.

    Routes are fixed at startup; adapters come and go as optional channels
    are configured. A route whose adapter is not attached resolves to None.
    """

    def __init__(
        self,
        builtin_kind: str,
        reserved: tuple[tuple[str, str], ...] = RESERVED_ROUTES,
    ) -> None:
        self._builtin_kind = builtin_kind
        self._routes: list[tuple[str, str]] = list(reserved)
        self._adapters: dict[str, ChannelAdapter] = {}

    @property
    def builtin_kind(self) -> str:
        return self._builtin_kind

    def add_route(self, prefix: str, kind: str) -> None:
        for routed_prefix, routed_kind in self._routes:
            if routed_prefix != prefix:
                continue
            if routed_kind == kind:
                return
            raise ValueError(f"Prefix {prefix!r} is already routed to {routed_kind}")
        self._routes.append((prefix, kind))

    def kind_for(self, group_id: str) -> str:
        for prefix, kind in self._routes:
            if group_id.startswith(prefix):
                return kind
        return self._builtin_kind

    def attach(self, adapter: ChannelAdapter) -> None:
        self._adapters[adapter.kind] = adapter

    def detach(self, kind: str) -> ChannelAdapter | None:
        return self._adapters.pop(kind, None)

    def get(self, kind: str) -> ChannelAdapter | None:
        return self._adapters.get(kind)

    def adapters(self) -> list[ChannelAdapter]:
        return list(self._adapters.values())

    def resolve(self, group_id: str) -> ChannelAdapter | None:
        return self._adapters.get(self.kind_for(group_id))

    async def send(self, group_id: str, text: str) -> None:
        adapter = self.resolve(group_id)
        if adapter is None:
            logger.warning("No channel for group, dropping outbound text", group_id=group_id)
            return
        await adapter.send(group_id, text)

    def set_typing(self, group_id: str, typing: bool) -> None:
        adapter = self.resolve(group_id)
        if adapter is None:
            logger.warning("No channel for group, ignoring typing", group_id=group_id)
            return
        adapter.set_typing(group_id, typing)
