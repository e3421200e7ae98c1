# project/attendance_client/context.py
# ------------------------------------------------------------
# SessionContext: the (group, subgroup, course) triple that scopes
# every remote call, plus the tiny JSON store that keeps the current
# selection between invocations.
# ------------------------------------------------------------

from __future__ import annotations
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional

from . import config
from .errors import PreconditionMissing

logger = logging.getLogger(__name__)

# storage keys, same names the web client kept in localStorage
KEY_GROUP = "selectedMajor"
KEY_SUBGROUP = "selectedSection"
KEY_COURSE = "selectedCourse"
SELECTION_KEYS = (KEY_GROUP, KEY_SUBGROUP, KEY_COURSE)


@dataclass(frozen=True)
class SessionContext:
    group: str
    subgroup: str
    course: str

    def validate(self) -> "SessionContext":
        missing = [
            name for name in ("group", "subgroup", "course")
            if not (getattr(self, name) or "").strip()
        ]
        if missing:
            raise PreconditionMissing(
                f"Missing session information ({', '.join(missing)}). Please start over."
            )
        return self

    def as_payload(self) -> Dict[str, str]:
        """Field names the backend expects in JSON bodies."""
        return {"major": self.group, "section": self.subgroup, "course": self.course}

    def label(self) -> str:
        return f"{self.group}/{self.subgroup}/{self.course}"


# -------------- selection store --------------
class SelectionStore:
    """Key/value selection state kept in a JSON file."""

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path is not None else config.SELECTION_JSON

    def load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, UnicodeDecodeError, OSError) as e:
            logger.warning("[store] unreadable %s, ignoring: %s", self.path, e)
            return {}
        if not isinstance(data, dict):
            return {}
        return {k: str(v) for k, v in data.items() if k in SELECTION_KEYS and v is not None}

    def save(self, data: Dict[str, str]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)

    def get(self, key: str) -> Optional[str]:
        return self.load().get(key)

    def set(self, key: str, value: str) -> None:
        data = self.load()
        data[key] = value
        self.save(data)

    def clear(self) -> None:
        data = self.load()
        for k in SELECTION_KEYS:
            data.pop(k, None)
        self.save(data)
        logger.info("[store] selection cleared")

    def remember(self, ctx: SessionContext) -> None:
        self.save({KEY_GROUP: ctx.group, KEY_SUBGROUP: ctx.subgroup, KEY_COURSE: ctx.course})

    def context(self) -> SessionContext:
        """Build (and validate) a context from the stored selection."""
        data = self.load()
        return SessionContext(
            group=data.get(KEY_GROUP, ""),
            subgroup=data.get(KEY_SUBGROUP, ""),
            course=data.get(KEY_COURSE, ""),
        ).validate()
