"""Application wiring: settings, database, plugins, worker and coordinator."""

from __future__ import annotations

import asyncio
import os
import signal
import sys

from switchboard.config import get_settings
from switchboard.console import Console
from switchboard.coordinator import Coordinator, load_runtime_config
from switchboard.db import close_database, init_database
from switchboard.logger import logger, set_level
from switchboard.plugin import collect_channel_specs, get_plugin_manager
from switchboard.utils import create_background_task
from switchboard.worker.boundary import SubprocessWorker


class SwitchboardApp:
    def __init__(self) -> None:
        self.coordinator: Coordinator | None = None
        self._stop: asyncio.Event | None = None
        self._shutting_down = False

    def request_stop(self) -> None:
        if self._stop is not None:
            self._stop.set()

    async def _shutdown(self, sig_name: str) -> None:
        """Signal handler. A second signal force-exits."""
        if self._shutting_down:
            logger.info("Force shutdown")
            os._exit(1)
        self._shutting_down = True
        logger.info("Shutdown signal received", signal=sig_name)
        self.request_stop()

    async def run(self) -> None:
        s = get_settings()
        set_level(s.logging.level)
        self._stop = asyncio.Event()

        await init_database()
        specs = collect_channel_specs(get_plugin_manager())
        config = await load_runtime_config(s)

        self.coordinator = Coordinator(
            config=config,
            worker=SubprocessWorker(s.worker.command, core=s.worker.core),
            channel_specs=specs,
            context_window=s.agent.context_window_size,
            worker_timeout=s.worker.timeout_seconds,
            poll_interval=s.scheduler.poll_interval,
            timezone=s.timezone,
        )

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(
                sig,
                lambda s=sig: asyncio.ensure_future(self._shutdown(s.name)),
            )

        console_task: asyncio.Task[None] | None = None
        try:
            await self.coordinator.start()
            if not config.is_configured():
                logger.warning(config.not_configured_message())
            if sys.stdin.isatty():
                console = Console(self.coordinator, on_quit=self.request_stop)
                console_task = create_background_task(console.run(), name="console")
            await self._stop.wait()
        finally:
            if console_task is not None:
                console_task.cancel()
            await self.coordinator.shutdown()
            await close_database()
