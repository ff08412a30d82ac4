"""Time helpers."""

from __future__ import annotations

import datetime as dt
from typing import Callable

Clock = Callable[[], dt.datetime]


def utcnow() -> dt.datetime:
    """Naive UTC now, matching the timezone-less timestamp columns."""
    return dt.datetime.now(dt.timezone.utc).replace(tzinfo=None)


def utc_timestamp() -> str:
    return utcnow().isoformat(timespec="seconds") + "Z"
