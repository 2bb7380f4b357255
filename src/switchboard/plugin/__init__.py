"""Plugin system for switchboard.

Channel plugins describe themselves with a ``ChannelSpec``; the coordinator
builds its routing table from every spec at startup. Third-party plugins
register through the ``switchboard`` entry-point group.

Usage:
    from switchboard.plugin import collect_channel_specs, get_plugin_manager

    pm = get_plugin_manager()
    specs = collect_channel_specs(pm)
"""

from __future__ import annotations

import importlib

import pluggy

from switchboard.config import get_settings
from switchboard.logger import logger
from switchboard.plugin.hookspecs import ChannelSpec, SwitchboardSpec, hookimpl

__all__ = [
    "ChannelSpec",
    "collect_channel_specs",
    "get_plugin_manager",
    "hookimpl",
]

# Static registry of built-in plugins.
# Each entry: (module_path, class_name, config_key)
# config_key is checked against [plugins.<key>].enabled in config.toml.
_BUILTIN_PLUGIN_SPECS: list[tuple[str, str, str]] = [
    ("switchboard.channels.local", "LocalChannelPlugin", "local"),
]


def get_plugin_manager() -> pluggy.PluginManager:
    """Create the plugin manager with built-in and entry-point plugins."""
    pm = pluggy.PluginManager("switchboard")
    pm.add_hookspecs(SwitchboardSpec)

    s = get_settings()

    for module_path, class_name, config_key in _BUILTIN_PLUGIN_SPECS:
        plugin_cfg = s.plugins.get(config_key)
        if plugin_cfg is not None and not plugin_cfg.enabled:
            logger.info("Plugin disabled via config", plugin=config_key)
            continue
        mod = importlib.import_module(module_path)
        pm.register(getattr(mod, class_name)(), name=f"builtin-{config_key}")
        logger.debug("Registered built-in plugin", name=config_key)

    discovered = pm.load_setuptools_entrypoints("switchboard")
    if discovered:
        logger.info("Discovered third-party plugins", count=discovered)

    # Entry points may resolve to a class rather than an instance.
    for plugin in list(pm.get_plugins()):
        if isinstance(plugin, type):
            plugin_name = pm.get_name(plugin) or plugin.__name__
            pm.unregister(plugin=plugin)
            logger.warning("Unregistered invalid class-based plugin object", plugin=plugin_name)

    for name, plugin in pm.list_name_plugin():
        if name.startswith("builtin-"):
            continue
        plugin_cfg = s.plugins.get(name)
        if plugin_cfg is not None and not plugin_cfg.enabled:
            pm.unregister(plugin=plugin)
            logger.info("Plugin disabled via config", plugin=name)

    logger.info("Plugin manager ready", plugins=[pm.get_name(p) for p in pm.get_plugins()])
    return pm


def collect_channel_specs(pm: pluggy.PluginManager) -> list[ChannelSpec]:
    """Gather channel specs from every plugin, rejecting duplicate kinds or prefixes."""
    specs: list[ChannelSpec] = []
    kinds: set[str] = set()
    prefixes: set[str] = set()
    for spec in pm.hook.switchboard_channel_spec():
        if spec is None:
            continue
        if spec.kind in kinds or spec.prefix in prefixes:
            logger.warning(
                "Ignoring duplicate channel spec", kind=spec.kind, prefix=spec.prefix
            )
            continue
        kinds.add(spec.kind)
        prefixes.add(spec.prefix)
        specs.append(spec)
    return specs
