"""Base class for Warden's timer-driven background modules.

A module owns one asyncio task that calls ``tick()`` every
``interval_seconds`` until it is stopped. Subclasses supply the tick and
their own health details; the lifecycle and status bookkeeping live here.
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from ..utils.clock import isoformat, utcnow
from ..utils.logging import get_logger


class PeriodicModule(ABC):
    def __init__(self, name: str, config: dict | None = None):
        cfg = config or {}
        self.name = name
        self.config = cfg
        self.enabled = cfg.get("enabled", True)
        self.running = False
        self.health_status = "initialized"
        self.last_heartbeat: Optional[datetime] = None
        self.logger = get_logger(f"module.{name}")

        self._interval_seconds: float = cfg.get("interval_seconds", 600)
        self._run_on_start: bool = cfg.get("run_on_start", False)
        self._task: Optional[asyncio.Task] = None

    @abstractmethod
    async def tick(self) -> None:
        """One unit of periodic work. Exceptions are logged, not propagated."""

    @abstractmethod
    async def health_check(self) -> dict:
        """Return ``{"status": str, "details": dict}``."""

    async def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self.running = True
        self.health_status = "running"
        self._task = asyncio.create_task(self._loop(), name=f"{self.name}_loop")
        self.heartbeat()
        self.logger.info(f"{self.name}_started", interval_seconds=self._interval_seconds)

    async def stop(self) -> None:
        """Stop the loop; an in-flight tick is cancelled."""
        self.running = False
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        self.health_status = "stopped"
        self.logger.info(f"{self.name}_stopped")

    async def _loop(self) -> None:
        if self._run_on_start:
            await self._safe_tick()
        while self.running:
            try:
                await asyncio.sleep(self._interval_seconds)
                if self.running:
                    await self._safe_tick()
            except asyncio.CancelledError:
                break

    async def _safe_tick(self) -> None:
        try:
            await self.tick()
        except Exception as e:
            self.logger.error(f"{self.name}_tick_error", error=str(e))

    def heartbeat(self) -> None:
        self.last_heartbeat = utcnow()

    def get_status(self) -> dict:
        return {
            "name": self.name,
            "enabled": self.enabled,
            "running": self.running,
            "health_status": self.health_status,
            "interval_seconds": self._interval_seconds,
            "last_heartbeat": isoformat(self.last_heartbeat),
        }
