# project/attendance_client/encoder.py
from __future__ import annotations
from typing import Optional

import cv2

from . import config
from .camera import CaptureHandle, Preview
from .errors import EncodingUnavailable


class FrameEncoder:
    """Snapshot of the preview surface as raw JPEG bytes (no data-URL header)."""

    def __init__(self, preview: Preview, quality: int = config.JPEG_QUALITY):
        self.preview = preview
        self.quality = int(quality)

    def capture(self, handle: Optional[CaptureHandle]) -> bytes:
        if handle is None or not handle.is_open:
            raise EncodingUnavailable("camera is not open")
        if not self.preview.is_bound_to(handle):
            raise EncodingUnavailable("preview is not bound to this camera")

        frame = self.preview.current_frame()
        if frame is None or frame.size == 0:
            raise EncodingUnavailable("no frame on the preview yet")

        ok, buf = cv2.imencode(".jpg", frame, [cv2.IMWRITE_JPEG_QUALITY, self.quality])
        if not ok:
            raise EncodingUnavailable("JPEG encoding failed")
        return buf.tobytes()
