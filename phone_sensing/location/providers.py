"""Positioning and battery collaborator interfaces, plus a CSV replay provider."""

from __future__ import annotations

import csv
import threading
from pathlib import Path
from typing import Callable, Iterator, Protocol

from phone_sensing.common.models import LocationFix

FixCallback = Callable[[LocationFix], None]
BatteryListener = Callable[[float, bool], object]


class PositioningProvider(Protocol):
    def is_available(self, provider_id: str) -> bool: ...

    def last_known_fix(self, provider_id: str) -> LocationFix | None: ...

    def subscribe(self, provider_id: str, min_interval: float, callback: FixCallback) -> None: ...

    def unsubscribe(self, provider_id: str) -> None: ...


class BatteryMonitor(Protocol):
    def register(self, listener: BatteryListener) -> None: ...

    def unregister(self) -> None: ...


def _optional(value: str | None) -> float | None:
    if value is None or not value.strip():
        return None
    return float(value)


def iter_fixes_csv(csv_path: str | Path) -> Iterator[LocationFix]:
    """Yield fixes from a CSV export. Coordinates stay strings to keep their exact digits."""
    p = Path(csv_path)
    with p.open("r", encoding="utf-8", newline="") as f:
        reader = csv.DictReader(f)
        if reader.fieldnames is None:
            return
        for row in reader:
            try:
                yield LocationFix(
                    timestamp_ms=int(row["timestamp_ms"].strip()),
                    provider=(row.get("provider") or "").strip(),
                    latitude=row["latitude"].strip(),
                    longitude=row["longitude"].strip(),
                    altitude=_optional(row.get("altitude")),
                    accuracy=_optional(row.get("accuracy")),
                    speed=_optional(row.get("speed")),
                    bearing=_optional(row.get("bearing")),
                )
            except KeyError as exc:
                raise KeyError(f"Fix CSV is missing column {exc}; columns: {reader.fieldnames}") from exc
            except (AttributeError, ValueError, TypeError):
                continue


class ReplayPositioningProvider:
    """Serves recorded fixes as if they came from live providers."""

    def __init__(self, fixes: list[LocationFix]) -> None:
        self._pending = sorted(fixes, key=lambda fix: fix.timestamp_ms)
        self._delivered: dict[str, LocationFix] = {}
        self._subscriptions: dict[str, tuple[float, FixCallback]] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_csv(cls, csv_path: str | Path) -> "ReplayPositioningProvider":
        return cls(list(iter_fixes_csv(csv_path)))

    def is_available(self, provider_id: str) -> bool:
        return any(fix.provider == provider_id for fix in self._pending) or provider_id in self._delivered

    def last_known_fix(self, provider_id: str) -> LocationFix | None:
        with self._lock:
            return self._delivered.get(provider_id)

    def subscribe(self, provider_id: str, min_interval: float, callback: FixCallback) -> None:
        with self._lock:
            self._subscriptions[provider_id] = (min_interval, callback)

    def unsubscribe(self, provider_id: str) -> None:
        with self._lock:
            self._subscriptions.pop(provider_id, None)

    @property
    def subscriptions(self) -> dict[str, float]:
        with self._lock:
            return {provider_id: interval for provider_id, (interval, _cb) in self._subscriptions.items()}

    def replay(self) -> int:
        """Deliver every recorded fix to its provider's subscriber. Returns the number delivered."""
        delivered = 0
        for fix in self._pending:
            with self._lock:
                self._delivered[fix.provider] = fix
                subscription = self._subscriptions.get(fix.provider)
            if subscription is None:
                continue
            _interval, callback = subscription
            callback(fix)
            delivered += 1
        self._pending = []
        return delivered
