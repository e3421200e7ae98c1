# project/attendance_client/errors.py
from __future__ import annotations
from typing import Optional


class AttendanceClientError(Exception):
    """Base class for everything the client raises on purpose."""


class PreconditionMissing(AttendanceClientError):
    """Session context is incomplete; nothing remote may be attempted."""


class CameraUnavailable(AttendanceClientError):
    """The camera could not be opened (no device, permission denied, busy)."""


class EncodingUnavailable(AttendanceClientError):
    """No frame to encode yet, or the JPEG encoder failed."""


class NetworkError(AttendanceClientError):
    """The request never got a response (connection refused, timeout, DNS...)."""


class ServiceError(AttendanceClientError):
    """The service answered, but not with something usable."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class LifecycleError(AttendanceClientError):
    """Remote begin/end of the attendance session failed."""


class SchedulerError(AttendanceClientError):
    """Illegal scheduler transition (e.g. restarting a stopped scheduler)."""
