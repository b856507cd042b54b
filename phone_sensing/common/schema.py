"""Minimal strict schemas for YAML config validation."""

from __future__ import annotations

from phone_sensing.common.errors import ConfigError

SOURCE_KEYS = {"project_id", "user_id", "source_id"}
LOCATION_KEYS = {
    "gps_interval_seconds",
    "gps_interval_reduced_seconds",
    "network_interval_seconds",
    "network_interval_reduced_seconds",
    "battery_level_minimum",
    "battery_level_reduced",
}
TELEPHONY_KEYS = {"log_interval_seconds", "log_history_seconds", "query_page_size"}
SINK_KEYS = {"kind", "url", "max_attempts", "timeout_seconds"}
SINK_KINDS = {"jsonl", "http", "memory"}
TOP_KEYS = {"source", "location", "telephony", "sink"}


def _assert_required_keys(obj: dict, required: set[str], ctx: str) -> None:
    missing = required - set(obj)
    if missing:
        missing_str = ", ".join(sorted(missing))
        raise ConfigError(f"Missing keys in {ctx}: {missing_str}")


def _assert_no_unknown_keys(obj: dict, known: set[str], ctx: str, allow_unknown: bool) -> None:
    if allow_unknown:
        return
    unknown = set(obj) - known
    if unknown:
        unknown_str = ", ".join(sorted(unknown))
        raise ConfigError(f"Unknown keys in {ctx}: {unknown_str}")


def _assert_mapping(obj: object, ctx: str) -> dict:
    if not isinstance(obj, dict):
        raise ConfigError(f"{ctx} must be a mapping")
    return obj


def _assert_interval(value: object, ctx: str, *, allow_disabled: bool = False) -> None:
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"{ctx} must be an integer number of seconds")
    if allow_disabled:
        return
    if value <= 0:
        raise ConfigError(f"{ctx} must be positive")


def _assert_fraction(value: object, ctx: str) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"{ctx} must be a number")
    if not 0.0 <= float(value) <= 1.0:
        raise ConfigError(f"{ctx} must be within [0, 1]")
    return float(value)


def validate_location_config(cfg: dict, *, allow_unknown: bool = False) -> dict:
    _assert_mapping(cfg, "location")
    _assert_required_keys(cfg, LOCATION_KEYS, "location")
    _assert_no_unknown_keys(cfg, LOCATION_KEYS, "location", allow_unknown)

    # zero or negative intervals switch a provider off
    for key in sorted(LOCATION_KEYS - {"battery_level_minimum", "battery_level_reduced"}):
        _assert_interval(cfg[key], f"location.{key}", allow_disabled=True)

    minimum = _assert_fraction(cfg["battery_level_minimum"], "location.battery_level_minimum")
    reduced = _assert_fraction(cfg["battery_level_reduced"], "location.battery_level_reduced")
    if minimum > reduced:
        raise ConfigError("location.battery_level_minimum must not exceed location.battery_level_reduced")
    return cfg


def validate_telephony_config(cfg: dict, *, allow_unknown: bool = False) -> dict:
    _assert_mapping(cfg, "telephony")
    _assert_required_keys(cfg, TELEPHONY_KEYS, "telephony")
    _assert_no_unknown_keys(cfg, TELEPHONY_KEYS, "telephony", allow_unknown)
    for key in sorted(TELEPHONY_KEYS):
        _assert_interval(cfg[key], f"telephony.{key}")
        if cfg[key] is None:
            raise ConfigError(f"telephony.{key} must be set")
    return cfg


def validate_sink_config(cfg: dict, *, allow_unknown: bool = False) -> dict:
    _assert_mapping(cfg, "sink")
    _assert_required_keys(cfg, {"kind"}, "sink")
    _assert_no_unknown_keys(cfg, SINK_KEYS, "sink", allow_unknown)
    if cfg["kind"] not in SINK_KINDS:
        raise ConfigError(f"sink.kind must be one of: {', '.join(sorted(SINK_KINDS))}")
    if cfg["kind"] == "http" and not cfg.get("url"):
        raise ConfigError("sink.url is required for the http sink")
    return cfg


def validate_sensing_config(cfg: dict, *, allow_unknown: bool = False) -> dict:
    _assert_mapping(cfg, "config")
    _assert_required_keys(cfg, TOP_KEYS, "config")
    _assert_no_unknown_keys(cfg, TOP_KEYS, "config", allow_unknown)

    source = _assert_mapping(cfg["source"], "source")
    _assert_required_keys(source, {"user_id", "source_id"}, "source")
    _assert_no_unknown_keys(source, SOURCE_KEYS, "source", allow_unknown)

    validate_location_config(cfg["location"], allow_unknown=allow_unknown)
    validate_telephony_config(cfg["telephony"], allow_unknown=allow_unknown)
    validate_sink_config(cfg["sink"], allow_unknown=allow_unknown)
    return cfg
