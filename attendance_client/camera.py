# project/attendance_client/camera.py
# ------------------------------------------------------------
# Camera ownership + preview surface.
#   - CameraCapture.acquire() opens the device, binds it to the
#     preview and shows the first raw frame straight away
#   - release() is idempotent and never raises
#   - Preview keeps only the latest raw frame (no history)
# ------------------------------------------------------------

from __future__ import annotations
import logging
import threading
from typing import Callable, List, Optional

import cv2
import numpy as np

from . import config
from .errors import CameraUnavailable

logger = logging.getLogger(__name__)

FONT = cv2.FONT_HERSHEY_SIMPLEX
GREEN = (40, 200, 40)
RED = (0, 0, 255)


class CaptureHandle:
    """
    One opened VideoCapture. Owned by exactly one CameraCapture.
    read() runs on worker threads; release() waits for an in-progress read.
    """

    def __init__(self, cap, index: int):
        self._cap = cap
        self.index = index
        self._lock = threading.Lock()

    @property
    def is_open(self) -> bool:
        return self._cap is not None

    def read(self) -> Optional[np.ndarray]:
        with self._lock:
            cap = self._cap
            if cap is None:
                return None
            ok, frame = cap.read()
        if not ok or frame is None:
            return None
        return frame

    def release(self) -> None:
        with self._lock:
            cap, self._cap = self._cap, None
            if cap is None:
                return
            try:
                cap.release()
            except cv2.error as e:
                logger.warning("[camera] release of index %s failed: %s", self.index, e)
                return
        logger.info("[camera] index %s released", self.index)


class Preview:
    """
    Live preview surface.
    Raw frames go to `window`, the backend's processed frame to `processed_window`.
    With show=False nothing is drawn (tests, headless kiosks) but the
    latest frame is still tracked so it can be encoded.
    """

    def __init__(self, window: str = "live attendance",
                 processed_window: str = "processed frame", show: bool = True):
        self.window = window
        self.processed_window = processed_window
        self.show = show
        self.handle: Optional[CaptureHandle] = None
        self._frame: Optional[np.ndarray] = None
        self._processed: Optional[np.ndarray] = None
        self.message: Optional[str] = None

    # ---- binding ----
    def bind(self, handle: CaptureHandle) -> None:
        self.handle = handle
        self._frame = None

    def unbind(self, handle: Optional[CaptureHandle] = None) -> None:
        if handle is None or self.handle is handle:
            self.handle = None
            self._frame = None

    def is_bound_to(self, handle: Optional[CaptureHandle]) -> bool:
        return handle is not None and self.handle is handle

    # ---- frames ----
    def update(self, frame: np.ndarray) -> None:
        self._frame = frame

    def current_frame(self) -> Optional[np.ndarray]:
        return self._frame

    def set_processed(self, jpeg_bytes: bytes) -> bool:
        arr = np.frombuffer(jpeg_bytes, np.uint8)
        img = cv2.imdecode(arr, cv2.IMREAD_COLOR)
        if img is None:
            logger.debug("[preview] processed frame did not decode (%d bytes)", len(jpeg_bytes))
            return False
        self._processed = img
        return True

    def show_message(self, message: Optional[str]) -> None:
        self.message = message

    # ---- drawing ----
    def render(self, lines: List[str]) -> None:
        if not self.show or self._frame is None:
            return
        vis = self._frame.copy()
        y = 28
        for text in lines:
            cv2.putText(vis, text, (12, y), FONT, 0.6, GREEN, 2, cv2.LINE_AA)
            y += 26
        if self.message:
            cv2.putText(vis, self.message, (12, vis.shape[0] - 16), FONT, 0.55, RED, 2, cv2.LINE_AA)
        cv2.imshow(self.window, vis)
        if self._processed is not None:
            cv2.imshow(self.processed_window, self._processed)

    def poll_key(self, delay_ms: int = 1) -> int:
        if not self.show:
            return -1
        key = cv2.waitKey(delay_ms)
        return -1 if key < 0 else key & 0xFF

    def close(self) -> None:
        self.unbind()
        self._processed = None
        if self.show:
            try:
                cv2.destroyAllWindows()
            except cv2.error:
                pass


class CameraCapture:
    """Acquire / release the camera; usable as a context manager."""

    def __init__(self, index: int = config.CAM_INDEX, preview: Optional[Preview] = None,
                 width: int = config.CAP_WIDTH, height: int = config.CAP_HEIGHT,
                 fps: int = config.TARGET_FPS,
                 capture_factory: Callable = cv2.VideoCapture):
        self.index = index
        self.preview = preview if preview is not None else Preview()
        self.width = width
        self.height = height
        self.fps = fps
        self._factory = capture_factory
        self.handle: Optional[CaptureHandle] = None

    def acquire(self) -> CaptureHandle:
        if self.handle is not None and self.handle.is_open:
            raise CameraUnavailable(f"camera index {self.index} is already in use by this client")

        try:
            cap = self._factory(self.index)
        except cv2.error as e:
            raise CameraUnavailable(f"Failed to access camera {self.index}: {e}") from e

        if cap is None or not cap.isOpened():
            if cap is not None:
                cap.release()
            raise CameraUnavailable(
                f"Failed to access camera {self.index}. Please check camera permissions."
            )

        cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)
        cap.set(cv2.CAP_PROP_FPS, self.fps)
        cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)

        handle = CaptureHandle(cap, self.index)
        frame = handle.read()
        if frame is None:
            handle.release()
            raise CameraUnavailable(f"Camera {self.index} opened but returned no frame")

        self.handle = handle
        self.preview.bind(handle)
        self.preview.update(frame)
        h, w = frame.shape[:2]
        logger.info("[camera] index %s opened (%dx%d)", self.index, w, h)
        return handle

    def release(self) -> None:
        handle, self.handle = self.handle, None
        if handle is None:
            return
        self.preview.unbind(handle)
        handle.release()

    def __enter__(self) -> CaptureHandle:
        return self.acquire()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
