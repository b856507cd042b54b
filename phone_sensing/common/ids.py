"""Identifiers for sensing runs; each one also names its log file under run_meta/."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

RUN_ID_PREFIX = "sensing"


def generate_run_id(command: str | None = None) -> str:
    """``sensing[-<command>]-<UTC second>-<6 hex>``, sortable by start time."""
    stamp = datetime.now(tz=timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    parts = [RUN_ID_PREFIX]
    if command:
        parts.append(command)
    parts.extend([stamp, uuid.uuid4().hex[:6]])
    return "-".join(parts)
