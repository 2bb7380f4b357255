"""Pluggy hook specifications for switchboard plugins.

All hooks use the "switchboard" namespace and are validated by pluggy at
registration time.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING

import pluggy

if TYPE_CHECKING:
    from switchboard.types import ChannelAdapter

hookspec = pluggy.HookspecMarker("switchboard")
hookimpl = pluggy.HookimplMarker("switchboard")


@dataclass(frozen=True)
class ChannelSpec:
    """What a channel plugin contributes to the routing table.

    Attributes:
        kind: channel identifier, e.g. ``"telegram"``.
        prefix: group id prefix routed to this channel, e.g. ``"tg:"``.
        factory: builds the adapter from its stored credential values, keyed
            by the names in ``config_keys``.
        config_keys: config store keys holding the channel's credentials.
            Stored encrypted.
        optional: optional channels are only instantiated once every key in
            ``config_keys`` has a value.
    """

    kind: str
    prefix: str
    factory: Callable[[Mapping[str, str]], ChannelAdapter]
    config_keys: tuple[str, ...] = ()
    optional: bool = True


class SwitchboardSpec:
    """Hook specifications for switchboard plugins."""

    @hookspec
    def switchboard_channel_spec(self) -> ChannelSpec | None:
        """Describe a chat channel.

        Returns:
            ChannelSpec, or None if this plugin doesn't provide a channel.
        """
