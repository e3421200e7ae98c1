# project/attendance_client/lifecycle.py
from __future__ import annotations
import asyncio
import logging

from .api import AttendanceApi
from .context import SessionContext
from .errors import LifecycleError, NetworkError, ServiceError

logger = logging.getLogger(__name__)


class SessionLifecycle:
    """Remote begin / end of the attendance session."""

    def __init__(self, api: AttendanceApi):
        self.api = api
        self.begun = False

    async def begin(self, ctx: SessionContext) -> None:
        ctx.validate()
        try:
            await asyncio.to_thread(self.api.start_attendance, ctx)
        except (NetworkError, ServiceError) as e:
            raise LifecycleError(f"Failed to start attendance session: {e}") from e
        self.begun = True
        logger.info("[session] attendance started for %s", ctx.label())

    async def end(self, ctx: SessionContext) -> None:
        # the service decides what ending an unknown session means
        ctx.validate()
        if not self.begun:
            logger.debug("[session] ending %s without a confirmed begin", ctx.label())
        try:
            await asyncio.to_thread(self.api.stop_attendance, ctx)
        except (NetworkError, ServiceError) as e:
            raise LifecycleError(f"Error stopping attendance: {e}") from e
        logger.info("[session] attendance stopped for %s", ctx.label())
