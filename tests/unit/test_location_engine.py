from __future__ import annotations

from decimal import Decimal

from phone_sensing.common.config_loader import LocationConfig
from phone_sensing.common.constants import (
    ALTITUDE_REFERENCE_KEY,
    LATITUDE_REFERENCE_KEY,
    LONGITUDE_REFERENCE_KEY,
    TOPIC_RELATIVE_LOCATION,
)
from phone_sensing.common.errors import PersistenceError, ProviderError
from phone_sensing.common.http import HttpClient, RetryConfig
from phone_sensing.common.models import (
    LocationFix,
    LocationProvider,
    ObservationKey,
    SamplingFrequency,
    SubsystemStatus,
)
from phone_sensing.location.engine import LocationEngine
from phone_sensing.sink.http_sink import HttpSink
from phone_sensing.sink.sinks import TopicCache
from phone_sensing.state.store import MemoryStore

KEY = ObservationKey(project_id=None, user_id="u1", source_id="s1")


class FakePositioningProvider:
    def __init__(self, available=("gps", "network"), last_known=None, denied=()):
        self.available = set(available)
        self.last_known = dict(last_known or {})
        self.denied = set(denied)
        self.subscriptions = {}
        self.calls = []

    def is_available(self, provider_id):
        if provider_id in self.denied:
            raise PermissionError(provider_id)
        return provider_id in self.available

    def last_known_fix(self, provider_id):
        return self.last_known.get(provider_id)

    def subscribe(self, provider_id, min_interval, callback):
        self.calls.append(("subscribe", provider_id, min_interval))
        self.subscriptions[provider_id] = (min_interval, callback)

    def unsubscribe(self, provider_id):
        self.calls.append(("unsubscribe", provider_id))
        self.subscriptions.pop(provider_id, None)

    def intervals(self):
        return {provider_id: interval for provider_id, (interval, _cb) in self.subscriptions.items()}

    def subscribe_count(self):
        return sum(1 for call in self.calls if call[0] == "subscribe")

    def emit(self, provider_id, fix):
        self.subscriptions[provider_id][1](fix)


class FakeBatteryMonitor:
    def __init__(self):
        self.listener = None

    def register(self, listener):
        self.listener = listener

    def unregister(self):
        self.listener = None


class FlakyStore(MemoryStore):
    def __init__(self, failures):
        super().__init__()
        self.failures = failures
        self.put_attempts = 0

    def put(self, values):
        self.put_attempts += 1
        if self.put_attempts <= self.failures:
            raise PersistenceError("disk full")
        super().put(values)


def _fix(lat, lon, provider="gps", ts=1_000, altitude=None):
    return LocationFix(timestamp_ms=ts, provider=provider, latitude=lat, longitude=lon, altitude=altitude)


def _engine(provider, store=None, sink=None, **kwargs):
    return LocationEngine(
        provider,
        store if store is not None else MemoryStore(),
        sink if sink is not None else TopicCache(),
        KEY,
        LocationConfig(),
        clock=lambda: 5_000.0,
        **kwargs,
    )


def _drain(engine):
    engine.worker.submit(lambda: None).result(timeout=5)


def test_start_emits_last_known_fix_and_subscribes_at_normal_rate():
    provider = FakePositioningProvider(last_known={"gps": _fix(52.0, 4.0, altitude=3.0)})
    sink = TopicCache()
    engine = _engine(provider, sink=sink)

    engine.start().result(timeout=5)

    assert provider.intervals() == {"gps": 3600, "network": 600}
    assert engine.frequency is SamplingFrequency.NORMAL
    assert engine.status is SubsystemStatus.CONNECTED
    records = sink.records(TOPIC_RELATIVE_LOCATION)
    assert len(records) == 1
    assert records[0].latitude == 0 and records[0].longitude == 0 and records[0].altitude == 0.0
    engine.stop()


def test_unavailable_provider_is_skipped():
    provider = FakePositioningProvider(available=("network",))
    engine = _engine(provider)

    engine.start().result(timeout=5)

    assert provider.intervals() == {"network": 600}
    assert engine.status is SubsystemStatus.CONNECTED
    engine.stop()


def test_permission_denied_degrades_only_that_provider():
    provider = FakePositioningProvider(denied=("gps",))
    engine = _engine(provider)

    engine.start().result(timeout=5)

    assert provider.intervals() == {"network": 600}
    assert engine.status is SubsystemStatus.DEGRADED
    engine.stop()


def test_provider_callbacks_are_transformed_on_the_worker():
    provider = FakePositioningProvider()
    store = MemoryStore()
    sink = TopicCache()
    engine = _engine(provider, store=store, sink=sink)
    engine.start().result(timeout=5)

    provider.emit("gps", _fix(52.1, 4.3, ts=1_000))
    provider.emit("network", _fix(52.3, 4.1, provider="network", ts=2_000))
    provider.emit("network", _fix(52.3, 4.1, provider="fused", ts=3_000))
    _drain(engine)

    records = sink.records(TOPIC_RELATIVE_LOCATION)
    assert [r.provider for r in records] == [LocationProvider.GPS, LocationProvider.NETWORK, LocationProvider.OTHER]
    assert records[1].latitude == Decimal("0.2")
    assert records[1].longitude == Decimal("-0.2")
    assert records[1].time == 2.0
    assert records[1].time_received == 5_000.0
    assert store.get(LATITUDE_REFERENCE_KEY) == "52.1"
    assert store.get(LONGITUDE_REFERENCE_KEY) == "4.3"
    assert store.get(ALTITUDE_REFERENCE_KEY) == "nan"
    engine.stop()


def test_reference_is_loaded_from_store():
    store = MemoryStore(
        {
            LATITUDE_REFERENCE_KEY: "50.0",
            LONGITUDE_REFERENCE_KEY: "5.0",
            ALTITUDE_REFERENCE_KEY: "100.0",
        }
    )
    engine = _engine(FakePositioningProvider(), store=store)

    out = engine.on_fix(_fix(50.5, 4.5, altitude=90.0)).result(timeout=5)

    assert out.latitude == Decimal("0.5")
    assert out.longitude == Decimal("-0.5")
    assert out.altitude == -10.0
    engine.stop()


def test_reference_altitude_is_never_set_later():
    store = MemoryStore()
    engine = _engine(FakePositioningProvider(), store=store)

    engine.on_fix(_fix(1.0, 1.0)).result(timeout=5)
    out = engine.on_fix(_fix(1.0, 1.0, altitude=50.0)).result(timeout=5)

    assert out.altitude is None
    assert store.get(ALTITUDE_REFERENCE_KEY) == "nan"
    engine.stop()


def test_invalid_fix_does_not_create_reference():
    store = MemoryStore()
    sink = TopicCache()
    engine = _engine(FakePositioningProvider(), store=store, sink=sink)

    assert engine.on_fix(_fix(float("nan"), 4.0)).result(timeout=5) is None
    assert engine.on_fix(None).result(timeout=5) is None

    assert engine.reference is None
    assert sink.count(TOPIC_RELATIVE_LOCATION) == 0
    engine.stop()


def test_reference_persistence_is_retried_once():
    store = FlakyStore(failures=1)
    engine = _engine(FakePositioningProvider(), store=store)

    engine.on_fix(_fix(10.0, 20.0)).result(timeout=5)

    assert store.put_attempts == 2
    assert store.get(LATITUDE_REFERENCE_KEY) == "10.0"
    engine.stop()


def test_reference_kept_in_memory_when_persistence_fails():
    store = FlakyStore(failures=10)
    sink = TopicCache()
    engine = _engine(FakePositioningProvider(), store=store, sink=sink)

    engine.on_fix(_fix(10.0, 20.0)).result(timeout=5)
    second = engine.on_fix(_fix(10.5, 20.5)).result(timeout=5)

    assert store.put_attempts == 2
    assert store.get(LATITUDE_REFERENCE_KEY) is None
    assert second.latitude == Decimal("0.5")
    assert sink.count(TOPIC_RELATIVE_LOCATION) == 2
    engine.stop()


def test_battery_state_machine_drives_subscriptions():
    provider = FakePositioningProvider()
    battery = FakeBatteryMonitor()
    engine = _engine(provider, battery_monitor=battery)
    engine.start().result(timeout=5)
    assert battery.listener is not None

    battery.listener(0.2, False).result(timeout=5)
    assert engine.frequency is SamplingFrequency.REDUCED
    assert provider.intervals() == {"gps": 18000, "network": 3000}

    battery.listener(0.05, False).result(timeout=5)
    assert engine.frequency is SamplingFrequency.OFF
    assert provider.intervals() == {}

    battery.listener(0.05, True).result(timeout=5)
    assert engine.frequency is SamplingFrequency.NORMAL
    assert provider.intervals() == {"gps": 3600, "network": 600}

    engine.stop()
    assert battery.listener is None


def test_same_frequency_does_not_resubscribe():
    provider = FakePositioningProvider()
    engine = _engine(provider)
    engine.start().result(timeout=5)
    subscribed = provider.subscribe_count()

    engine.on_battery_change(0.5, False).result(timeout=5)
    engine.on_battery_change(0.9, False).result(timeout=5)
    engine.on_battery_change(0.1, True).result(timeout=5)

    assert provider.subscribe_count() == subscribed
    engine.stop()


def test_update_rate_unsubscribes_before_subscribing():
    provider = FakePositioningProvider()
    engine = _engine(provider)
    engine.start().result(timeout=5)
    provider.calls.clear()

    engine.set_update_rate(120, 60).result(timeout=5)

    assert provider.calls == [
        ("unsubscribe", "gps"),
        ("unsubscribe", "network"),
        ("subscribe", "gps", 120),
        ("subscribe", "network", 60),
    ]
    engine.stop()


def test_non_positive_period_disables_provider():
    provider = FakePositioningProvider()
    engine = _engine(provider)
    engine.start().result(timeout=5)

    engine.set_update_rate(0, 60).result(timeout=5)

    assert provider.intervals() == {"network": 60}
    engine.stop()


def test_set_intervals_resubscribes_at_current_frequency():
    provider = FakePositioningProvider()
    engine = _engine(provider)
    engine.start().result(timeout=5)
    engine.on_battery_change(0.2, False).result(timeout=5)

    engine.set_intervals(100, 500, 50, 250).result(timeout=5)

    assert engine.frequency is SamplingFrequency.REDUCED
    assert provider.intervals() == {"gps": 500, "network": 250}
    engine.stop()


def test_set_battery_levels_reevaluates_last_reading():
    provider = FakePositioningProvider()
    engine = _engine(provider)
    engine.start().result(timeout=5)
    engine.on_battery_change(0.4, False).result(timeout=5)
    assert engine.frequency is SamplingFrequency.NORMAL

    engine.set_battery_levels(0.2, 0.5).result(timeout=5)

    assert engine.frequency is SamplingFrequency.REDUCED
    engine.stop()


def test_stop_deregisters_and_ignores_late_callbacks():
    provider = FakePositioningProvider()
    sink = TopicCache()
    engine = _engine(provider, sink=sink)
    engine.start().result(timeout=5)
    _interval, callback = provider.subscriptions["gps"]

    engine.stop()
    callback(_fix(1.0, 1.0))

    assert provider.subscriptions == {}
    assert engine.status is SubsystemStatus.DISCONNECTED
    assert engine.on_fix(_fix(1.0, 1.0)) is None
    assert sink.count(TOPIC_RELATIVE_LOCATION) == 0


class ExplodingSink:
    def __init__(self, error):
        self.error = error
        self.attempts = 0

    def append(self, topic, key, measurement):
        self.attempts += 1
        raise self.error


class BrokenLastKnownProvider(FakePositioningProvider):
    def last_known_fix(self, provider_id):
        if provider_id == "gps":
            raise ProviderError("location service crashed")
        return super().last_known_fix(provider_id)


def test_sink_failure_on_last_known_fix_does_not_block_subscriptions():
    last_known = {"gps": _fix(52.0, 4.0), "network": _fix(52.0, 4.0, provider="network")}
    provider = FakePositioningProvider(last_known=last_known)
    sink = ExplodingSink(RuntimeError("collector schema mismatch"))
    engine = _engine(provider, sink=sink)

    engine.start().result(timeout=5)

    assert provider.intervals() == {"gps": 3600, "network": 600}
    assert sink.attempts == 2
    assert engine.status is SubsystemStatus.CONNECTED
    engine.stop()


def test_http_sink_with_malformed_url_is_contained():
    provider = FakePositioningProvider(last_known={"gps": _fix(52.0, 4.0)})
    sink = HttpSink("collector.local:8080", HttpClient(retry=RetryConfig(max_attempts=1)))
    engine = _engine(provider, sink=sink)

    engine.start().result(timeout=5)
    provider.emit("network", _fix(52.1, 4.1, provider="network"))
    _drain(engine)

    assert provider.intervals() == {"gps": 3600, "network": 600}
    engine.stop()
    sink.close()


def test_failing_provider_only_degrades_itself():
    provider = BrokenLastKnownProvider(last_known={"network": _fix(52.0, 4.0, provider="network")})
    sink = TopicCache()
    engine = _engine(provider, sink=sink)

    engine.start().result(timeout=5)

    assert provider.intervals() == {"network": 600}
    assert engine.status is SubsystemStatus.DEGRADED
    assert sink.count(TOPIC_RELATIVE_LOCATION) == 1
    engine.stop()


def test_battery_reading_before_start_decides_first_state():
    provider = FakePositioningProvider()
    engine = _engine(provider)

    engine.on_battery_change(0.05, False).result(timeout=5)
    engine.start().result(timeout=5)

    assert engine.frequency is SamplingFrequency.OFF
    assert provider.intervals() == {}

    engine.on_battery_change(0.2, False).result(timeout=5)
    assert engine.frequency is SamplingFrequency.REDUCED
    assert provider.intervals() == {"gps": 18000, "network": 3000}
    engine.stop()
