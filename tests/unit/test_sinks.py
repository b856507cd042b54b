import json
from decimal import Decimal
from pathlib import Path

import pytest

from phone_sensing.common.errors import SinkError
from phone_sensing.common.models import (
    LocationProvider,
    ObservationKey,
    PhoneCall,
    PhoneCallType,
    RelativeLocation,
    normalize_float,
)
from phone_sensing.sink.sinks import JsonLinesSink, TopicCache

KEY = ObservationKey(project_id=None, user_id="u1", source_id="s1")


def test_jsonl_sink_writes_one_file_per_topic(tmp_path: Path):
    sink = JsonLinesSink(tmp_path / "out")
    call = PhoneCall(1.5, 2.0, 30.0, b"\x00\x01", PhoneCallType.MISSED, False, False, 10)

    sink.append("android_phone_call", KEY, call)
    sink.append("android_phone_call", KEY, call)

    lines = (tmp_path / "out" / "android_phone_call.jsonl").read_text(encoding="utf-8").splitlines()
    assert len(lines) == 2
    record = json.loads(lines[0])
    assert record["key"] == {"project_id": None, "source_id": "s1", "user_id": "u1"}
    assert record["value"]["type"] == "MISSED"
    assert record["value"]["target"] == "AAE="


def test_jsonl_sink_failure_raises_sink_error(tmp_path: Path):
    blocker = tmp_path / "out"
    blocker.write_text("not a directory", encoding="utf-8")
    sink = JsonLinesSink(blocker)

    with pytest.raises(SinkError):
        sink.append("android_phone_call", KEY, PhoneCall(1.0, 1.0, None, None, PhoneCallType.UNKNOWN, None, True, 0))


def test_relative_location_serialization_normalizes_floats():
    location = RelativeLocation(
        time=1.0,
        time_received=2.0,
        provider=LocationProvider.GPS,
        latitude=Decimal("0.2"),
        longitude=Decimal("-0.2"),
        altitude=None,
        accuracy=float("inf"),
        speed=float("nan"),
        bearing=-float("inf"),
    )

    value = location.to_dict()

    assert value["provider"] == "GPS"
    assert value["latitude"] == 0.2
    assert value["longitude"] == -0.2
    assert value["altitude"] is None
    assert value["accuracy"] == 1e308
    assert value["speed"] is None
    assert value["bearing"] == -1e308


def test_normalize_float():
    assert normalize_float(None) is None
    assert normalize_float(float("nan")) is None
    assert normalize_float(3.5) == 3.5


def test_topic_cache_counts_per_topic():
    cache = TopicCache()
    call = PhoneCall(1.0, 1.0, None, None, PhoneCallType.UNKNOWN, None, True, 0)

    cache.append("a", KEY, call)
    cache.append("a", KEY, call)
    cache.append("b", KEY, call)

    assert cache.count("a") == 2
    assert cache.records("b") == [call]
    assert cache.records("missing") == []
