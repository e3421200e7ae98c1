# project/attendance_client/scheduler.py
# ------------------------------------------------------------
# Fixed-cadence sampling timer.
#   - one cycle task spawned every `interval` seconds (wall clock)
#   - cycles are allowed to overlap; a slow cycle never delays the next tick
#   - stop() cancels the timer only, in-flight cycles run to completion
#   - IDLE -> RUNNING -> STOPPED, no way back
# ------------------------------------------------------------

from __future__ import annotations
import asyncio
import enum
import logging
from typing import Awaitable, Callable, Optional, Set

from . import config
from .errors import SchedulerError

logger = logging.getLogger(__name__)

CycleFn = Callable[[], Awaitable[None]]


class SchedulerState(enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


class SamplingScheduler:
    def __init__(self, interval: float = config.SAMPLE_INTERVAL_S):
        self.interval = interval
        self.ticks = 0
        self._state = SchedulerState.IDLE
        self._cycle_fn: Optional[CycleFn] = None
        self._timer: Optional[asyncio.Task] = None
        self._in_flight: Set[asyncio.Task] = set()

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def running(self) -> bool:
        return self._state is SchedulerState.RUNNING

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def start(self, cycle_fn: CycleFn, interval: Optional[float] = None) -> None:
        """Must be called from inside a running event loop."""
        if self._state is not SchedulerState.IDLE:
            raise SchedulerError(f"cannot start a scheduler that is {self._state.value}")
        if interval is not None:
            self.interval = interval
        if self.interval <= 0:
            raise SchedulerError(f"interval must be positive, got {self.interval}")

        loop = asyncio.get_running_loop()
        self._cycle_fn = cycle_fn
        self._state = SchedulerState.RUNNING
        self._timer = loop.create_task(self._run())
        logger.info("[scheduler] running every %.2fs", self.interval)

    def stop(self) -> None:
        if self._state is SchedulerState.STOPPED:
            return
        self._state = SchedulerState.STOPPED
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        logger.info("[scheduler] stopped after %d ticks (%d cycles in flight)", self.ticks, self.in_flight)

    async def drain(self) -> None:
        """Wait for cycles that were already spawned."""
        if self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        next_tick = loop.time() + self.interval
        while True:
            await asyncio.sleep(max(0.0, next_tick - loop.time()))
            if self._state is not SchedulerState.RUNNING:
                break
            self._spawn()
            next_tick += self.interval
            now = loop.time()
            if next_tick < now:
                # event loop was stalled: skip the ticks we missed instead of bursting
                missed = int((now - next_tick) // self.interval) + 1
                next_tick += missed * self.interval
                logger.debug("[scheduler] skipped %d late ticks", missed)

    def _spawn(self) -> None:
        self.ticks += 1
        task = asyncio.ensure_future(self._cycle_fn())
        self._in_flight.add(task)
        task.add_done_callback(self._on_cycle_done)

    def _on_cycle_done(self, task: asyncio.Task) -> None:
        self._in_flight.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("[scheduler] cycle %r raised: %s", task.get_name(), exc, exc_info=exc)
