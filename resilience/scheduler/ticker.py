"""
Periodic Ticks (resilience/scheduler/ticker.py)

PURPOSE:
Drives the engine's periodic work (threshold classification, reorder
checks, allocation expiry, performance snapshots) as independent asyncio
tasks.

Each tick function takes an explicit `now` so the same code is driven
deterministically from tests. A failing tick is logged and the loop keeps
running.
"""

import asyncio
import logging
import time
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

TickFunction = Callable[[float], object]


class PeriodicTask:
    """Calls `func(now)` every `interval` seconds until stopped."""

    def __init__(self, name: str, interval: float, func: TickFunction,
                 clock: Callable[[], float] = time.time):
        self.name = name
        self.interval = interval
        self.func = func
        self.clock = clock
        self.runs = 0
        self.failures = 0
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self):
        if self._running:
            logger.warning(f"[Scheduler] {self.name} already running")
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info(f"[Scheduler] Started {self.name} (every {self.interval}s)")

    async def stop(self):
        if not self._running:
            return
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info(f"[Scheduler] Stopped {self.name}")

    def run_once(self, now: Optional[float] = None):
        """Run a single tick; exceptions are logged, not raised."""
        try:
            self.func(self.clock() if now is None else now)
            self.runs += 1
        except Exception as e:
            self.failures += 1
            logger.error(f"[Scheduler] {self.name} tick failed: {e}")

    async def _loop(self):
        try:
            while self._running:
                await asyncio.sleep(self.interval)
                self.run_once()
        except asyncio.CancelledError:
            logger.debug(f"[Scheduler] {self.name} loop cancelled")
            raise


class Scheduler:
    """A named set of PeriodicTasks started and stopped together."""

    def __init__(self):
        self._tasks: Dict[str, PeriodicTask] = {}

    def add(self, task: PeriodicTask) -> PeriodicTask:
        if task.name in self._tasks:
            raise ValueError(f"Task already scheduled: {task.name}")
        self._tasks[task.name] = task
        return task

    def get(self, name: str) -> Optional[PeriodicTask]:
        return self._tasks.get(name)

    def tasks(self) -> List[PeriodicTask]:
        return list(self._tasks.values())

    async def start(self):
        for task in self._tasks.values():
            await task.start()

    async def stop(self):
        for task in self._tasks.values():
            await task.stop()

    def tick_all(self, now: Optional[float] = None):
        for task in self._tasks.values():
            task.run_once(now)
