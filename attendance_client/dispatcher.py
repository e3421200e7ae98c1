# project/attendance_client/dispatcher.py
from __future__ import annotations
import asyncio
import base64
import binascii
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from .api import AttendanceApi
from .context import SessionContext
from .errors import ServiceError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CycleResult:
    processed_image: Optional[bytes] = None
    new_detections: Tuple[str, ...] = ()


def _decode_image(value: Any) -> Optional[bytes]:
    """processedFrame is display-only: anything unusable is treated as absent."""
    if value is None or value == "":
        return None
    if not isinstance(value, str):
        logger.debug("[dispatch] processedFrame ignored: %s, not a string", type(value).__name__)
        return None
    # tolerate a data URL ("data:image/jpeg;base64,....") and MIME line breaks
    if value.startswith("data:") and "," in value:
        value = value.split(",", 1)[1]
    value = "".join(value.split())
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        logger.debug("[dispatch] processedFrame ignored: %s", e)
        return None


def parse_frame_response(data: Dict[str, Any]) -> CycleResult:
    """
    Turn a /process_frame JSON body into a CycleResult.
    Only malformed detections make the body unusable.
    """
    image = _decode_image(data.get("processedFrame"))

    students = data.get("detectedStudents")
    if students is None:
        detections: Tuple[str, ...] = ()
    elif isinstance(students, (list, tuple)):
        detections = tuple(str(s) for s in students if s is not None)
    else:
        raise ServiceError(f"detectedStudents must be a list, got {type(students).__name__}")

    return CycleResult(processed_image=image, new_detections=detections)


class DetectionDispatcher:
    """One frame in, one CycleResult out. No retries: the next tick supersedes a failed one."""

    def __init__(self, api: AttendanceApi):
        self.api = api

    async def dispatch(self, frame_bytes: bytes, ctx: SessionContext) -> CycleResult:
        ctx.validate()
        frame_b64 = base64.b64encode(frame_bytes).decode("ascii")
        data = await asyncio.to_thread(self.api.process_frame, frame_b64, ctx)
        return parse_frame_response(data)
