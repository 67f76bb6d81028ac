"""Sprint numbering — two ISO weeks per sprint."""

from __future__ import annotations

import math
from datetime import date, datetime


def iso_week(day: date | datetime) -> int:
    return day.isocalendar()[1]


def sprint_number(day: date | datetime) -> int:
    """Sprint index within the ISO year: weeks 1-2 → 1, 3-4 → 2, ..."""
    return math.ceil(iso_week(day) / 2)
