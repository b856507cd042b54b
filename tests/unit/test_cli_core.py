from pathlib import Path

import pytest

from phone_sensing.cli import build_sink, parse_args
from phone_sensing.common.config_loader import SinkConfig
from phone_sensing.common.errors import ConfigError
from phone_sensing.sink.http_sink import HttpSink
from phone_sensing.sink.sinks import JsonLinesSink, TopicCache


def test_parse_args_defaults():
    args = parse_args(["extract-logs"])
    assert args.command == "extract-logs"
    assert args.config == "./config/phone.yml"
    assert args.overlay_config is None
    assert args.charging is False
    assert args.battery_level is None


def test_parse_args_replay_options():
    args = parse_args(["replay-locations", "--fixes", "fixes.csv", "--battery-level", "0.2", "--charging"])
    assert args.fixes == "fixes.csv"
    assert args.battery_level == 0.2
    assert args.charging is True


def test_build_sink_kinds(tmp_path: Path):
    jsonl = build_sink(SinkConfig(), tmp_path)
    assert isinstance(jsonl, JsonLinesSink)
    assert jsonl.out_dir == tmp_path / "out"

    assert isinstance(build_sink(SinkConfig(kind="memory"), tmp_path), TopicCache)

    http = build_sink(SinkConfig(), tmp_path, sink_url="https://collector.example.test")
    assert isinstance(http, HttpSink)
    http.close()


def test_build_sink_http_requires_url(tmp_path: Path):
    with pytest.raises(ConfigError):
        build_sink(SinkConfig(kind="http"), tmp_path)
