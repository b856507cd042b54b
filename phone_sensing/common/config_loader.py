"""Configuration loading and validation."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

from phone_sensing.common.constants import (
    CALL_SMS_LOG_HISTORY_DEFAULT,
    CALL_SMS_LOG_INTERVAL_DEFAULT,
    LOCATION_GPS_INTERVAL_DEFAULT,
    LOCATION_NETWORK_INTERVAL_DEFAULT,
    MINIMUM_BATTERY_LEVEL,
    QUERY_PAGE_SIZE_DEFAULT,
    REDUCED_BATTERY_LEVEL,
    REDUCED_INTERVAL_FACTOR,
)
from phone_sensing.common.errors import ConfigError
from phone_sensing.common.fs import read_yaml
from phone_sensing.common.models import ObservationKey
from phone_sensing.common.schema import validate_sensing_config

DEFAULTS: dict[str, Any] = {
    "source": {"project_id": None, "user_id": "unknown", "source_id": "unknown"},
    "location": {
        "gps_interval_seconds": LOCATION_GPS_INTERVAL_DEFAULT,
        "gps_interval_reduced_seconds": None,
        "network_interval_seconds": LOCATION_NETWORK_INTERVAL_DEFAULT,
        "network_interval_reduced_seconds": None,
        "battery_level_minimum": MINIMUM_BATTERY_LEVEL,
        "battery_level_reduced": REDUCED_BATTERY_LEVEL,
    },
    "telephony": {
        "log_interval_seconds": CALL_SMS_LOG_INTERVAL_DEFAULT,
        "log_history_seconds": CALL_SMS_LOG_HISTORY_DEFAULT,
        "query_page_size": QUERY_PAGE_SIZE_DEFAULT,
    },
    "sink": {"kind": "jsonl", "url": None, "max_attempts": 5, "timeout_seconds": 30},
}


@dataclass(frozen=True)
class LocationConfig:
    gps_interval: int = LOCATION_GPS_INTERVAL_DEFAULT
    gps_interval_reduced: int = LOCATION_GPS_INTERVAL_DEFAULT * REDUCED_INTERVAL_FACTOR
    network_interval: int = LOCATION_NETWORK_INTERVAL_DEFAULT
    network_interval_reduced: int = LOCATION_NETWORK_INTERVAL_DEFAULT * REDUCED_INTERVAL_FACTOR
    battery_level_minimum: float = MINIMUM_BATTERY_LEVEL
    battery_level_reduced: float = REDUCED_BATTERY_LEVEL


@dataclass(frozen=True)
class TelephonyConfig:
    log_interval: int = CALL_SMS_LOG_INTERVAL_DEFAULT
    log_history: int = CALL_SMS_LOG_HISTORY_DEFAULT
    query_page_size: int = QUERY_PAGE_SIZE_DEFAULT


@dataclass(frozen=True)
class SinkConfig:
    kind: str = "jsonl"
    url: str | None = None
    max_attempts: int = 5
    timeout_seconds: float = 30.0


@dataclass(frozen=True)
class SensingConfig:
    source: ObservationKey
    location: LocationConfig
    telephony: TelephonyConfig
    sink: SinkConfig


def _deep_merge(base: Any, overlay: Any) -> Any:
    if isinstance(base, dict) and isinstance(overlay, dict):
        merged = dict(base)
        for key, value in overlay.items():
            if key in merged:
                merged[key] = _deep_merge(merged[key], value)
            else:
                merged[key] = value
        return merged
    return overlay


def _load_yaml_with_overlay(path: Path, overlay_path: Path | None) -> dict:
    base = read_yaml(path) or {}
    if overlay_path is None or not overlay_path.exists():
        return base
    overlay = read_yaml(overlay_path)
    if overlay is None:
        return base
    return _deep_merge(base, overlay)


def _reduced(value: int | None, normal: int) -> int:
    if value is None:
        return normal * REDUCED_INTERVAL_FACTOR
    return value


def build_config(raw: dict, *, allow_unknown: bool = False) -> SensingConfig:
    cfg = validate_sensing_config(_deep_merge(DEFAULTS, raw), allow_unknown=allow_unknown)
    location = cfg["location"]
    telephony = cfg["telephony"]
    sink = cfg["sink"]
    source = cfg["source"]
    return SensingConfig(
        source=ObservationKey(
            project_id=source.get("project_id"),
            user_id=str(source["user_id"]),
            source_id=str(source["source_id"]),
        ),
        location=LocationConfig(
            gps_interval=location["gps_interval_seconds"],
            gps_interval_reduced=_reduced(location["gps_interval_reduced_seconds"], location["gps_interval_seconds"]),
            network_interval=location["network_interval_seconds"],
            network_interval_reduced=_reduced(
                location["network_interval_reduced_seconds"], location["network_interval_seconds"]
            ),
            battery_level_minimum=float(location["battery_level_minimum"]),
            battery_level_reduced=float(location["battery_level_reduced"]),
        ),
        telephony=TelephonyConfig(
            log_interval=telephony["log_interval_seconds"],
            log_history=telephony["log_history_seconds"],
            query_page_size=telephony["query_page_size"],
        ),
        sink=SinkConfig(
            kind=sink["kind"],
            url=sink.get("url"),
            max_attempts=int(sink.get("max_attempts") or 5),
            timeout_seconds=float(sink.get("timeout_seconds") or 30),
        ),
    )


def load_config(
    config_path: Path,
    *,
    allow_unknown: bool = False,
    overlay_path: Path | None = None,
) -> SensingConfig:
    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")
    raw = _load_yaml_with_overlay(config_path, overlay_path)
    return build_config(raw, allow_unknown=allow_unknown)
