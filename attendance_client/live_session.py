# project/attendance_client/live_session.py
# ------------------------------------------------------------
# One live attendance session:
#   start():  validate context -> acquire camera -> scheduler + remote begin
#   cycle:    encode preview frame -> dispatch -> merge into seen set
#   stop():   scheduler.stop() -> remote end -> camera release   (user "Stop")
#   close():  scheduler.stop() -> camera release                 (user "Back")
# stop()/close() are idempotent and share one shutdown task.
# ------------------------------------------------------------

from __future__ import annotations
import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, FrozenSet, List, Optional, Tuple

from . import config
from .api import AttendanceApi
from .camera import CameraCapture, CaptureHandle
from .context import SessionContext
from .dispatcher import CycleResult, DetectionDispatcher
from .encoder import FrameEncoder
from .errors import (
    CameraUnavailable, EncodingUnavailable, LifecycleError, NetworkError,
    PreconditionMissing, SchedulerError, ServiceError,
)
from .lifecycle import SessionLifecycle
from .scheduler import SamplingScheduler
from .seen import merge

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionSummary:
    context: SessionContext
    seen: Tuple[str, ...]
    remote_ended: bool
    halted: bool

    @property
    def count(self) -> int:
        return len(self.seen)


class LiveSession:
    def __init__(self, context: SessionContext, api: Optional[AttendanceApi], camera: CameraCapture, *,
                 encoder: Optional[FrameEncoder] = None,
                 dispatcher: Optional[DetectionDispatcher] = None,
                 lifecycle: Optional[SessionLifecycle] = None,
                 scheduler: Optional[SamplingScheduler] = None,
                 interval: float = config.SAMPLE_INTERVAL_S,
                 max_consecutive_failures: int = config.MAX_CONSECUTIVE_FAILURES,
                 notify: Optional[Callable[[str], None]] = None):
        if max_consecutive_failures < 1:
            raise ValueError("max_consecutive_failures must be >= 1")
        self.context = context
        self.camera = camera
        self.preview = camera.preview
        self.encoder = encoder or FrameEncoder(camera.preview)
        self.dispatcher = dispatcher or DetectionDispatcher(api)
        self.lifecycle = lifecycle or SessionLifecycle(api)
        self.scheduler = scheduler or SamplingScheduler(interval)
        self.max_consecutive_failures = max_consecutive_failures
        self._notify = notify

        self.handle: Optional[CaptureHandle] = None
        self.seen: FrozenSet[str] = frozenset()
        self.processed_image: Optional[bytes] = None
        self.consecutive_failures = 0
        self.halted = False
        self.last_error: Optional[str] = None
        self._begin_task: Optional[asyncio.Task] = None
        self._shutdown_task: Optional[asyncio.Task] = None

    # -------------- live view state --------------
    @property
    def count(self) -> int:
        return len(self.seen)

    @property
    def status(self) -> str:
        return "Recording Attendance" if self.scheduler.running else "Stopped"

    @property
    def finished(self) -> bool:
        return self._shutdown_task is not None

    def overlay_lines(self) -> List[str]:
        return [
            f"Course: {self.context.label()}",
            f"Status: {self.status}",
            f"Students Detected: {self.count}",
        ]

    # -------------- start --------------
    async def start(self) -> "LiveSession":
        if self.handle is not None or self.finished:
            raise SchedulerError("session was already started")
        try:
            self.context.validate()
        except PreconditionMissing as e:
            self._report(str(e))
            raise

        try:
            self.handle = await asyncio.to_thread(self.camera.acquire)
        except CameraUnavailable as e:
            self._report(str(e))
            raise

        try:
            self.scheduler.start(self._cycle)
            self._begin_task = asyncio.ensure_future(self._begin())
        except BaseException:
            self._release()
            raise
        logger.info("[session] live for %s", self.context.label())
        return self

    async def _begin(self) -> None:
        try:
            await self.lifecycle.begin(self.context)
        except LifecycleError as e:
            # frames keep flowing; the service may accept them anyway
            self._report(str(e))

    # -------------- one cycle --------------
    async def _cycle(self) -> None:
        if not self.scheduler.running:
            return
        try:
            frame = self.encoder.capture(self.handle)
        except EncodingUnavailable as e:
            logger.debug("[cycle] skipped: %s", e)
            return

        try:
            result = await self.dispatcher.dispatch(frame, self.context)
        except (NetworkError, ServiceError) as e:
            self._on_dispatch_failure(e)
            return

        if not self.scheduler.running:
            logger.debug("[cycle] stale result discarded")
            return
        self.consecutive_failures = 0
        self._apply(result)

    def _apply(self, result: CycleResult) -> None:
        if result.processed_image is not None:
            self.processed_image = result.processed_image
            self.preview.set_processed(result.processed_image)

        before = self.count
        self.seen = merge(self.seen, result.new_detections)
        if self.count > before:
            logger.info("[cycle] +%d seen (total %d)", self.count - before, self.count)

    def _on_dispatch_failure(self, exc: Exception) -> None:
        if not self.scheduler.running:
            logger.debug("[cycle] failure after stop ignored: %s", exc)
            return
        self.consecutive_failures += 1
        logger.warning("[cycle] Error processing frame (%d/%d): %s",
                       self.consecutive_failures, self.max_consecutive_failures, exc)
        if self.consecutive_failures >= self.max_consecutive_failures:
            self.halted = True
            self.scheduler.stop()
            self._report(
                f"Frame processing stopped after {self.consecutive_failures} failed attempts: {exc}"
            )

    # -------------- stop / close --------------
    async def stop(self) -> SessionSummary:
        """User pressed Stop: end the remote session, then let go of the camera."""
        if self._shutdown_task is None:
            self._shutdown_task = asyncio.ensure_future(self._shutdown(end_remote=True))
        return await self._shutdown_task

    async def close(self) -> SessionSummary:
        """Leave the live view without ending the remote session."""
        if self._shutdown_task is None:
            self._shutdown_task = asyncio.ensure_future(self._shutdown(end_remote=False))
        return await self._shutdown_task

    async def _shutdown(self, end_remote: bool) -> SessionSummary:
        self.scheduler.stop()
        remote_ended = False
        try:
            if end_remote:
                remote_ended = await self._end_remote()
        finally:
            self._release()

        summary = SessionSummary(
            context=self.context,
            seen=tuple(sorted(self.seen)),
            remote_ended=remote_ended,
            halted=self.halted,
        )
        logger.info("[session] %s closed: %d seen, remote_ended=%s",
                    self.context.label(), summary.count, remote_ended)
        return summary

    async def _end_remote(self) -> bool:
        if self._begin_task is not None and not self._begin_task.done():
            # keep begin/end ordered on the service side
            await self._begin_task
        try:
            await self.lifecycle.end(self.context)
        except (LifecycleError, PreconditionMissing) as e:
            self._report(str(e))
            return False
        return True

    def _release(self) -> None:
        self.handle = None
        self.camera.release()

    # -------------- notifications --------------
    def _report(self, message: str) -> None:
        self.last_error = message
        logger.warning("[notify] %s", message)
        self.preview.show_message(message)
        if self._notify is not None:
            self._notify(message)

    # -------------- scoped use --------------
    async def __aenter__(self) -> "LiveSession":
        return await self.start()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
