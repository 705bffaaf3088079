"""Fixed-interval background loop shared by the dispatchers.

A loop calls ``tick(now)`` every ``interval_seconds`` from its own asyncio
task. A failing tick is logged and counted and the next one runs on
schedule; only ``stop()`` ends the task.

    dispatcher = ReminderDispatcher(...)
    await dispatcher.start()    # app startup
    await dispatcher.stop()     # app shutdown
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from outreach_agent.core.logging import get_logger

log = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class SchedulerState(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    PAUSED = "paused"
    STOPPING = "stopping"


@dataclass
class LoopConfig:
    """Timing for one loop.

    Attributes:
        interval_seconds: Pause between the end of one tick and the next
        startup_delay_seconds: Pause before the first tick
        stop_timeout_seconds: How long stop() waits for a running tick
    """

    interval_seconds: float = 60.0
    startup_delay_seconds: float = 5.0
    stop_timeout_seconds: float = 30.0


@dataclass
class LoopMetrics:
    started_at: datetime | None = None
    ticks: int = 0
    skipped_ticks: int = 0
    errors: int = 0
    last_tick_at: datetime | None = None
    last_error: str | None = None
    last_report: dict[str, Any] | None = None

    def record_tick(self, report: Any) -> None:
        self.ticks += 1
        self.last_tick_at = _utcnow()
        if hasattr(report, "to_dict"):
            self.last_report = report.to_dict()

    def record_error(self, error: Exception) -> None:
        self.errors += 1
        self.last_error = str(error)

    def to_dict(self) -> dict[str, Any]:
        return {
            "started_at": _iso(self.started_at),
            "ticks": self.ticks,
            "skipped_ticks": self.skipped_ticks,
            "errors": self.errors,
            "last_tick_at": _iso(self.last_tick_at),
            "last_error": self.last_error,
            "last_report": self.last_report,
        }


class PeriodicLoop(ABC):
    """Base for the reminder and campaign dispatchers.

    Overlapping ticks are refused within one process only. Two replicas
    ticking at once are kept apart by the conditional status claims in
    the repositories, not by anything here.
    """

    name: str = "periodic"

    def __init__(self, config: LoopConfig | None = None) -> None:
        self.config = config or LoopConfig()
        self._state = SchedulerState.STOPPED
        self._metrics = LoopMetrics()
        self._task: asyncio.Task | None = None
        self._stopping = asyncio.Event()
        self._tick_in_progress = False

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def metrics(self) -> LoopMetrics:
        return self._metrics

    @property
    def is_running(self) -> bool:
        return self._state is SchedulerState.RUNNING

    @abstractmethod
    async def tick(self, now: datetime) -> Any:
        """One dispatch pass. A returned object with ``to_dict`` becomes the last report."""

    async def run_once(self, now: datetime | None = None) -> Any:
        """Tick immediately; returns None without ticking if a tick is already running.

        Exceptions from ``tick`` propagate to the caller.
        """
        if self._tick_in_progress:
            self._metrics.skipped_ticks += 1
            log.debug("Tick skipped, previous one still running", loop=self.name)
            return None

        self._tick_in_progress = True
        try:
            report = await self.tick(now or _utcnow())
        finally:
            self._tick_in_progress = False
        self._metrics.record_tick(report)
        return report

    async def start(self) -> None:
        if self._state is not SchedulerState.STOPPED:
            log.warning("Loop already started", loop=self.name, state=self._state.value)
            return

        self._state = SchedulerState.STARTING
        self._stopping.clear()
        self._metrics = LoopMetrics(started_at=_utcnow())
        self._task = asyncio.create_task(self._run(), name=f"{self.name}-loop")
        self._state = SchedulerState.RUNNING
        log.info(
            "Loop started",
            loop=self.name,
            interval_seconds=self.config.interval_seconds,
            startup_delay_seconds=self.config.startup_delay_seconds,
        )

    async def stop(self) -> None:
        """Ask the task to finish; cancel it if a tick outlives ``stop_timeout_seconds``."""
        if self._state is SchedulerState.STOPPED:
            return

        self._state = SchedulerState.STOPPING
        self._stopping.set()
        task, self._task = self._task, None
        if task is not None:
            done, _ = await asyncio.wait({task}, timeout=self.config.stop_timeout_seconds)
            if not done:
                log.warning("Tick overran stop timeout, cancelling", loop=self.name)
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)

        self._state = SchedulerState.STOPPED
        log.info("Loop stopped", loop=self.name)

    async def pause(self) -> None:
        """Keep the task alive but skip ticks until resumed."""
        if self._state is SchedulerState.RUNNING:
            self._state = SchedulerState.PAUSED
            log.info("Loop paused", loop=self.name)

    async def resume(self) -> None:
        if self._state is SchedulerState.PAUSED:
            self._state = SchedulerState.RUNNING
            log.info("Loop resumed", loop=self.name)

    async def _sleep(self, seconds: float) -> bool:
        """Sleep, returning early with True once stop() is called."""
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True

    async def _run(self) -> None:
        stopped = await self._sleep(self.config.startup_delay_seconds)
        while not stopped:
            if self._state is SchedulerState.RUNNING:
                try:
                    await self.run_once()
                except Exception as e:
                    self._metrics.record_error(e)
                    log.error("Loop tick failed", loop=self.name, error=str(e), exc_info=True)
            stopped = await self._sleep(self.config.interval_seconds)

    def get_status(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "state": self._state.value,
            "is_running": self.is_running,
            "tick_in_progress": self._tick_in_progress,
            "interval_seconds": self.config.interval_seconds,
            "metrics": self._metrics.to_dict(),
        }
