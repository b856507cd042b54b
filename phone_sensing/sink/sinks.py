"""Append-only measurement sinks."""

from __future__ import annotations

import threading
from pathlib import Path
from typing import Protocol

from phone_sensing.common.errors import SinkError
from phone_sensing.common.fs import append_json_line
from phone_sensing.common.models import Measurement, ObservationKey


class MeasurementSink(Protocol):
    def append(self, topic: str, key: ObservationKey, measurement: Measurement) -> None: ...


class TopicCache:
    """In-memory per-topic cache."""

    def __init__(self) -> None:
        self._records: dict[str, list[tuple[ObservationKey, Measurement]]] = {}
        self._lock = threading.Lock()

    def append(self, topic: str, key: ObservationKey, measurement: Measurement) -> None:
        with self._lock:
            self._records.setdefault(topic, []).append((key, measurement))

    def records(self, topic: str) -> list[Measurement]:
        with self._lock:
            return [measurement for _key, measurement in self._records.get(topic, [])]

    def count(self, topic: str) -> int:
        with self._lock:
            return len(self._records.get(topic, []))


class JsonLinesSink:
    """One ``<topic>.jsonl`` file per topic under ``out_dir``."""

    def __init__(self, out_dir: Path) -> None:
        self.out_dir = out_dir
        self._lock = threading.Lock()

    def path_for(self, topic: str) -> Path:
        return self.out_dir / f"{topic}.jsonl"

    def append(self, topic: str, key: ObservationKey, measurement: Measurement) -> None:
        record = {"key": key.to_dict(), "value": measurement.to_dict()}
        with self._lock:
            try:
                append_json_line(self.path_for(topic), record)
            except OSError as exc:
                raise SinkError(f"Cannot append to {self.path_for(topic)}: {exc}") from exc
