"""
Interval overlap.

Windows are half-open [start, end): touching at a boundary is not an overlap,
a zero-length window overlaps nothing (itself included).
"""
from __future__ import annotations
import math
from datetime import datetime
from typing import Tuple


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    # пустое или перевёрнутое окно не пересекается ни с чем
    if a_start >= a_end or b_start >= b_end:
        return False
    return a_start < b_end and a_end > b_start


def overlap_window(a_start: datetime, a_end: datetime,
                   b_start: datetime, b_end: datetime) -> Tuple[datetime, datetime]:
    """Пересечение двух окон: max(начал)..min(концов). Вызывать только для пересекающихся окон."""
    return max(a_start, b_start), min(a_end, b_end)


def minutes_between(start: datetime, end: datetime) -> int:
    # половина минуты округляется вверх
    return math.floor((end - start).total_seconds() / 60 + 0.5)
