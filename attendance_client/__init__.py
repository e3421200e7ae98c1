# project/attendance_client/__init__.py
"""Live face-attendance client: camera -> backend recognition -> seen set."""

from .context import SessionContext, SelectionStore
from .errors import (
    AttendanceClientError, CameraUnavailable, EncodingUnavailable, LifecycleError,
    NetworkError, PreconditionMissing, SchedulerError, ServiceError,
)
from .live_session import LiveSession, SessionSummary
from .scheduler import SamplingScheduler, SchedulerState

__version__ = "0.1.0"
