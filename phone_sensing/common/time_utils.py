"""UTC-focused clock helpers."""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], float]


def current_time() -> float:
    """Wall-clock time in seconds since the epoch."""
    return time.time()


def current_time_ms(clock: Clock = current_time) -> int:
    return int(clock() * 1000)


def utc_timestamp_iso() -> str:
    return datetime.now(tz=timezone.utc).isoformat(timespec="milliseconds")
