# project/attendance_client/run_loop.py
# ------------------------------------------------------------
# Live attendance screen:
#   - raw camera frames pumped into the preview window
#   - the session samples the preview once per interval
#   - overlay: course, status, "Students Detected: N", last error
#   - processed frame from the backend in a second window
# ESC / q = Stop Attendance, b = Back (leave without ending)
# ------------------------------------------------------------

from __future__ import annotations
import asyncio
import logging
import time
from typing import Callable, Optional

from . import config
from .api import AttendanceApi
from .camera import CameraCapture, Preview
from .context import SessionContext
from .live_session import LiveSession, SessionSummary

logger = logging.getLogger(__name__)

KEY_ESC = 27
STOP_KEYS = {KEY_ESC, ord("q")}
BACK_KEYS = {ord("b")}

OUTCOME_STOP = "stop"
OUTCOME_BACK = "back"
OUTCOME_CAMERA_LOST = "camera_lost"


async def pump_preview(session: LiveSession, max_duration_s: Optional[float] = None,
                       frame_delay_s: float = 0.0) -> str:
    """Feed camera frames to the preview until the user (or the clock) says so."""
    started = time.monotonic()
    handle = session.handle
    while True:
        if handle is None or not handle.is_open:
            return OUTCOME_CAMERA_LOST
        frame = await asyncio.to_thread(handle.read)
        if frame is None:
            logger.error("[run] camera stopped delivering frames")
            return OUTCOME_CAMERA_LOST

        session.preview.update(frame)
        session.preview.render(session.overlay_lines())

        key = session.preview.poll_key()
        if key in STOP_KEYS:
            return OUTCOME_STOP
        if key in BACK_KEYS:
            return OUTCOME_BACK
        if max_duration_s is not None and time.monotonic() - started >= max_duration_s:
            logger.info("[run] %.0fs elapsed, stopping", max_duration_s)
            return OUTCOME_STOP
        # let sampling cycles run between frames
        await asyncio.sleep(frame_delay_s)


async def run_live(context: SessionContext, api: AttendanceApi, *,
                   camera: Optional[CameraCapture] = None,
                   preview: Optional[Preview] = None,
                   interval: float = config.SAMPLE_INTERVAL_S,
                   max_consecutive_failures: int = config.MAX_CONSECUTIVE_FAILURES,
                   max_duration_s: Optional[float] = None,
                   notify: Optional[Callable[[str], None]] = None) -> SessionSummary:
    """Run the live screen; camera + windows are always released on the way out."""
    if camera is None:
        camera = CameraCapture(preview=preview or Preview())
    session = LiveSession(
        context, api, camera,
        interval=interval,
        max_consecutive_failures=max_consecutive_failures,
        notify=notify,
    )
    try:
        async with session:
            outcome = await pump_preview(session, max_duration_s=max_duration_s)
            logger.info("[run] leaving live view (%s)", outcome)
            if outcome == OUTCOME_STOP:
                return await session.stop()
            return await session.close()
    finally:
        camera.preview.close()
