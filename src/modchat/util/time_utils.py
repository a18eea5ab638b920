"""Millisecond clock and timestamp formatting helpers."""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], int]

MINUTE_MS = 60_000


def current_millis() -> int:
    """Return the current Unix time in whole milliseconds."""
    return int(time.time() * 1000)


def minutes_from_now(minutes: float, clock: Clock = current_millis) -> int:
    """Return the absolute deadline ``minutes`` after ``clock()``."""
    return clock() + int(minutes * MINUTE_MS)


def humanize_millis(value: int) -> str:
    """Return a human-readable timestamp (YYYY-MM-DD HH:MM:SS) in UTC.

    Args:
        value: Unix time in milliseconds.

    Returns:
        Human-readable UTC timestamp string.
    """
    moment = datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    return moment.strftime("%Y-%m-%d %H:%M:%S UTC")


def export_date_stamp(value: int) -> str:
    """Return the ``YYYY-MM-DD`` UTC date used in export filenames."""
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc).strftime("%Y-%m-%d")
