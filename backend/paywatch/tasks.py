"""
Cancellable periodic tasks.

Each task owns one asyncio loop: sleep for a fixed interval, then run one tick
on a worker thread so blocking RPC or database calls stall only this task.
Ticks of the same task never overlap. stop() sets a flag checked at the top of
every iteration and wakes the sleep; an in-flight tick runs to completion.
"""

import asyncio
import logging
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)


class TaskState(str, Enum):
    STOPPED = "stopped"
    RUNNING = "running"


class PeriodicTask:
    """Base class for the chain monitors and the expiry sweep."""

    name: str = "task"

    def __init__(self, interval: float) -> None:
        if interval <= 0:
            raise ValueError(f"Poll interval must be positive, got {interval}")
        self.interval = interval
        self.state = TaskState.STOPPED
        self._stop_requested = False
        self._wakeup: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self.state == TaskState.RUNNING

    def initialize(self) -> None:
        """Runs once on a worker thread when the task starts."""

    def tick(self) -> None:
        raise NotImplementedError

    async def start(self) -> None:
        if self.running:
            return
        self._stop_requested = False
        self._wakeup = asyncio.Event()
        self.state = TaskState.RUNNING
        logger.info(f"[{self.name}] Starting (interval={self.interval}s)")
        try:
            await asyncio.to_thread(self.initialize)
        except Exception as e:
            # The loop retries whatever initialize() could not establish
            logger.error(f"[{self.name}] Initialization failed: {e}")
        self._task = asyncio.create_task(self._run(), name=self.name)

    async def stop(self) -> None:
        if not self.running:
            return
        self._stop_requested = True
        if self._wakeup is not None:
            self._wakeup.set()
        if self._task is not None:
            await self._task
            self._task = None
        self.state = TaskState.STOPPED
        logger.info(f"[{self.name}] Stopped.")

    async def _run(self) -> None:
        while not self._stop_requested:
            await self._sleep()
            if self._stop_requested:
                break
            try:
                await asyncio.to_thread(self.tick)
            except Exception as e:
                logger.error(f"[{self.name}] Tick failed: {e}")

    async def _sleep(self) -> None:
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=self.interval)
        except asyncio.TimeoutError:
            pass
