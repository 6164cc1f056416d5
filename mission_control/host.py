"""Application host: wires registry, persistence and autosave together."""

from __future__ import annotations

import asyncio
import time

from loguru import logger

from mission_control.bus.events import EventHub
from mission_control.config.schema import Config
from mission_control.session.registry import SessionRegistry
from mission_control.session.state_store import StateStore


class MissionControlHost:
    """
    Owns the process-wide registry and its persistence:
    restore on startup -> periodic autosave -> save and stop all on shutdown.
    """

    def __init__(
        self,
        config: Config | None = None,
        registry: SessionRegistry | None = None,
        store: StateStore | None = None,
    ) -> None:
        self.config = config or Config()
        self.hub = registry.hub if registry is not None else EventHub()
        self.registry = registry or SessionRegistry(self.config, self.hub)
        self.store = store or StateStore(self.config.state_path)
        self._autosave_task: asyncio.Task | None = None
        self._started = False

    async def start(self) -> int:
        """Restore saved state and begin autosaving; returns projects restored."""
        if self._started:
            return 0
        self._started = True
        restored = self.restore()
        interval = self.config.persistence.autosave_interval_s
        if interval > 0:
            self._autosave_task = asyncio.create_task(self._autosave_loop(interval))
        logger.info(f"[host] Started with {restored} restored projects")
        return restored

    def restore(self) -> int:
        saved = self.store.load()
        if saved is None:
            return 0
        return self.registry.restore(saved.projects, saved.recent_commands)

    def save(self) -> bool:
        return self.store.save(self.registry.all_projects(), self.registry.command_history)

    async def shutdown(self) -> None:
        """Save state, stop every session and wait out the stop grace window."""
        if self._autosave_task is not None:
            self._autosave_task.cancel()
            try:
                await self._autosave_task
            except asyncio.CancelledError:
                pass
            self._autosave_task = None

        self.save()
        stopping = self.registry.cleanup()
        if stopping:
            deadline = time.monotonic() + self.config.runtime.stop_grace_s + 0.5
            while time.monotonic() < deadline and not all(h.exited for h in stopping):
                await asyncio.sleep(0.05)
            self.save()
        self._started = False
        logger.info("[host] Shut down")

    async def _autosave_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                self.save()
            except Exception:
                logger.exception("[host] Autosave failed")
