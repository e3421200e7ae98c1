from __future__ import annotations
import asyncio
import threading
from typing import Any, Dict, List, Optional

import numpy as np
import pytest

from attendance_client.camera import CameraCapture, Preview
from attendance_client.context import SessionContext
from attendance_client.dispatcher import CycleResult
from attendance_client.errors import NetworkError


# -------------- camera fakes --------------
class FakeCap:
    """Stands in for cv2.VideoCapture."""

    def __init__(self, index: int = 0, opened: bool = True, frames: Optional[int] = None,
                 shape=(48, 64, 3)):
        self.index = index
        self.opened = opened
        self.frames_left = frames      # None = endless
        self.shape = shape
        self.props: Dict[int, float] = {}
        self.release_calls = 0
        self.reads = 0

    def isOpened(self) -> bool:
        return self.opened

    def set(self, prop, value) -> bool:
        self.props[prop] = value
        return True

    def read(self):
        if not self.opened:
            return False, None
        if self.frames_left is not None:
            if self.frames_left <= 0:
                return False, None
            self.frames_left -= 1
        self.reads += 1
        frame = np.full(self.shape, (self.reads * 7) % 255, dtype=np.uint8)
        return True, frame

    def release(self) -> None:
        self.release_calls += 1
        self.opened = False


class CapFactory:
    def __init__(self, **cap_kwargs):
        self.cap_kwargs = cap_kwargs
        self.caps: List[FakeCap] = []

    def __call__(self, index):
        cap = FakeCap(index, **self.cap_kwargs)
        self.caps.append(cap)
        return cap


# -------------- backend fakes --------------
class FakeApi:
    """Same surface as AttendanceApi, no network."""

    def __init__(self, responses: Optional[List[Any]] = None, courses: Optional[List[str]] = None):
        self.responses = list(responses or [])
        self.courses = courses if courses is not None else ["CS101", "CS102"]
        self.start_error: Optional[Exception] = None
        self.stop_error: Optional[Exception] = None
        self.calls: List[str] = []
        self.frames: List[str] = []
        self.record = b"PK\x03\x04fake-xlsx"
        self._lock = threading.Lock()

    def get_courses(self, group, subgroup):
        self.calls.append("get_courses")
        return list(self.courses)

    def start_attendance(self, ctx):
        self.calls.append("start")
        if self.start_error:
            raise self.start_error

    def stop_attendance(self, ctx):
        self.calls.append("stop")
        if self.stop_error:
            raise self.stop_error

    def process_frame(self, frame_b64, ctx):
        with self._lock:
            self.calls.append("process")
            self.frames.append(frame_b64)
            nxt = self.responses.pop(0) if self.responses else {}
        if isinstance(nxt, Exception):
            raise nxt
        return nxt

    def download_excel(self, ctx):
        self.calls.append("download")
        return self.record

    def close(self):
        self.calls.append("close")

    def count(self, name: str) -> int:
        return self.calls.count(name)


class ScriptedDispatcher:
    """Dispatcher that answers without leaving the event loop thread."""

    def __init__(self, script: Optional[List[Any]] = None, fail_always: bool = False):
        self.script = list(script or [])
        self.fail_always = fail_always
        self.calls = 0

    async def dispatch(self, frame_bytes, ctx) -> CycleResult:
        self.calls += 1
        if self.fail_always:
            raise NetworkError("connection refused")
        item = self.script.pop(0) if self.script else CycleResult()
        if isinstance(item, Exception):
            raise item
        return item


class RecordingLifecycle:
    def __init__(self, events: Optional[List[Any]] = None, scheduler=None):
        self.events = events if events is not None else []
        self.scheduler = scheduler
        self.begin_calls = 0
        self.end_calls = 0

    async def begin(self, ctx):
        self.begin_calls += 1
        self.events.append("begin")

    async def end(self, ctx):
        self.end_calls += 1
        state = self.scheduler.state if self.scheduler is not None else None
        self.events.append(("end", state))


async def wait_for(predicate, timeout: float = 3.0, step: float = 0.005) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(step)


# -------------- fixtures --------------
@pytest.fixture
def ctx() -> SessionContext:
    return SessionContext("CS", "A", "CS101")


@pytest.fixture
def cap_factory() -> CapFactory:
    return CapFactory()


@pytest.fixture
def camera(cap_factory) -> CameraCapture:
    return CameraCapture(index=0, preview=Preview(show=False), capture_factory=cap_factory)
