# project/attendance_client/api.py
# ------------------------------------------------------------
# Thin requests wrapper around the attendance backend.
#   GET  /get_courses/<major>/<section>
#   GET  /start_attendance/<major>/<section>/<course>
#   POST /process_frame         {frame, major, section, course}
#   GET  /stop_attendance/<major>/<section>/<course>
#   GET  /download_excel/<major>/<section>/<course>
# Transport failures -> NetworkError, bad answers -> ServiceError.
# ------------------------------------------------------------

from __future__ import annotations
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests

from . import config
from .context import SessionContext
from .errors import NetworkError, ServiceError

logger = logging.getLogger(__name__)


class AttendanceApi:
    def __init__(self, base_url: str = config.BACKEND_URL,
                 timeout: Optional[float] = config.REQUEST_TIMEOUT_S,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session if session is not None else requests.Session()

    def url(self, *segments: str) -> str:
        return "/".join([self.base_url] + [quote(str(s), safe="") for s in segments])

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        try:
            r = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise NetworkError(f"{method} {url} failed: {e}") from e
        if not 200 <= r.status_code < 300:
            raise ServiceError(f"{method} {url} -> {r.status_code}: {r.text[:160]}", r.status_code)
        return r

    @staticmethod
    def _json(r: requests.Response) -> Any:
        try:
            return r.json()
        except ValueError as e:
            raise ServiceError(f"invalid JSON from {r.url}: {e}", r.status_code) from e

    # -------------- selection --------------
    def get_courses(self, group: str, subgroup: str) -> List[str]:
        data = self._json(self._request("GET", self.url("get_courses", group, subgroup)))
        if not isinstance(data, list):
            raise ServiceError(f"Invalid data format received: expected a list, got {type(data).__name__}")
        return [str(c) for c in data]

    # -------------- session --------------
    def start_attendance(self, ctx: SessionContext) -> None:
        self._request("GET", self.url("start_attendance", ctx.group, ctx.subgroup, ctx.course))
        logger.debug("[api] start_attendance %s ok", ctx.label())

    def stop_attendance(self, ctx: SessionContext) -> None:
        self._request("GET", self.url("stop_attendance", ctx.group, ctx.subgroup, ctx.course))
        logger.debug("[api] stop_attendance %s ok", ctx.label())

    def process_frame(self, frame_b64: str, ctx: SessionContext) -> Dict[str, Any]:
        payload = {"frame": frame_b64}
        payload.update(ctx.as_payload())
        data = self._json(self._request("POST", self.url("process_frame"), json=payload))
        if not isinstance(data, dict):
            raise ServiceError(f"Unexpected response format from process_frame: {type(data).__name__}")
        return data

    # -------------- record --------------
    def download_excel(self, ctx: SessionContext) -> bytes:
        r = self._request("GET", self.url("download_excel", ctx.group, ctx.subgroup, ctx.course))
        return r.content

    def close(self) -> None:
        self.session.close()
