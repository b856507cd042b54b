from pathlib import Path

import pytest

from phone_sensing.common.config_loader import build_config, load_config
from phone_sensing.common.errors import ConfigError

REPO_CONFIG = Path(__file__).resolve().parents[2] / "config" / "phone.yml"


def test_load_config_from_repo_config():
    config = load_config(REPO_CONFIG)

    assert config.source.user_id == "local-user"
    assert config.location.gps_interval == 3600
    assert config.location.gps_interval_reduced == 18000
    assert config.location.network_interval_reduced == 3000
    assert config.location.battery_level_minimum == 0.15
    assert config.telephony.log_interval == 86400
    assert config.telephony.query_page_size == 1000
    assert config.sink.kind == "jsonl"


def test_missing_config_file(tmp_path: Path):
    with pytest.raises(ConfigError):
        load_config(tmp_path / "absent.yml")


def test_overlay_values_are_merged(tmp_path: Path):
    overlay = tmp_path / "overlay.yml"
    overlay.write_text(
        """location:
  gps_interval_seconds: 60
  gps_interval_reduced_seconds: 90
sink:
  kind: http
  url: "https://collector.example.test"
""",
        encoding="utf-8",
    )

    config = load_config(REPO_CONFIG, overlay_path=overlay)

    assert config.location.gps_interval == 60
    assert config.location.gps_interval_reduced == 90
    assert config.location.network_interval == 600
    assert config.sink.kind == "http"
    assert config.sink.url == "https://collector.example.test"


def test_empty_overlay_is_ignored(tmp_path: Path):
    overlay = tmp_path / "overlay.yml"
    overlay.write_text("", encoding="utf-8")

    assert load_config(REPO_CONFIG, overlay_path=overlay) == load_config(REPO_CONFIG)


def test_defaults_fill_missing_sections():
    config = build_config({"source": {"user_id": "u", "source_id": "s"}})

    assert config.source.project_id is None
    assert config.location.network_interval == 600
    assert config.telephony.log_history == 86400


def test_non_positive_location_interval_is_accepted():
    config = build_config({"location": {"gps_interval_seconds": 0}})

    assert config.location.gps_interval == 0
    assert config.location.gps_interval_reduced == 0


@pytest.mark.parametrize(
    "raw",
    [
        {"location": {"battery_level_minimum": 0.5, "battery_level_reduced": 0.3}},
        {"location": {"battery_level_reduced": 1.5}},
        {"location": {"gps_interval_seconds": "hourly"}},
        {"telephony": {"log_interval_seconds": 0}},
        {"telephony": {"query_page_size": None}},
        {"sink": {"kind": "kafka"}},
        {"sink": {"kind": "http"}},
        {"surprise": True},
        {"location": {"unknown_knob": 1}},
    ],
)
def test_invalid_configs_are_rejected(raw):
    with pytest.raises(ConfigError):
        build_config(raw)


def test_unknown_keys_allowed_when_requested():
    config = build_config({"location": {"unknown_knob": 1}}, allow_unknown=True)
    assert config.location.gps_interval == 3600
