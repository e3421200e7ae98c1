# project/attendance_client/seen.py
from __future__ import annotations
from typing import AbstractSet, FrozenSet, Iterable, Optional


def merge(existing: AbstractSet[str], new_detections: Optional[Iterable[str]]) -> FrozenSet[str]:
    """Union of what was seen so far and what this cycle reported. Never shrinks."""
    return frozenset(existing) | frozenset(new_detections or ())
