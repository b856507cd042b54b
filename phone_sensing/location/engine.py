"""Location engine: provider subscriptions, relative transform and battery-driven sampling."""

from __future__ import annotations

import logging
from concurrent.futures import Future
from typing import Sequence

from phone_sensing.common.config_loader import LocationConfig
from phone_sensing.common.constants import (
    PROVIDER_GPS,
    PROVIDER_NETWORK,
    SUPPORTED_PROVIDERS,
    TOPIC_RELATIVE_LOCATION,
)
from phone_sensing.common.errors import PersistenceError
from phone_sensing.common.logging import get_logger, log_event
from phone_sensing.common.models import (
    LocationFix,
    ObservationKey,
    ReferencePoint,
    RelativeLocation,
    SamplingFrequency,
    SubsystemStatus,
)
from phone_sensing.common.time_utils import Clock, current_time
from phone_sensing.common.worker import SerialWorker, log_failure
from phone_sensing.location.providers import BatteryMonitor, PositioningProvider
from phone_sensing.location.sampling import BatteryThresholds, UpdateIntervals, next_frequency
from phone_sensing.location.transform import has_valid_coordinates, reference_from_fix, relative_location
from phone_sensing.sink.sinks import MeasurementSink
from phone_sensing.state.reference import load_reference, save_reference
from phone_sensing.state.store import KeyValueStore

logger = get_logger("location")

SUBSYSTEM = "location"


class LocationEngine:
    """Turns provider fixes into relative locations and adapts polling to the battery.

    Every state change runs on the engine's own worker thread. The public
    methods only enqueue work and return the Future of that work item.
    """

    def __init__(
        self,
        provider: PositioningProvider,
        store: KeyValueStore,
        sink: MeasurementSink,
        key: ObservationKey,
        config: LocationConfig | None = None,
        *,
        battery_monitor: BatteryMonitor | None = None,
        clock: Clock = current_time,
        providers: Sequence[str] = SUPPORTED_PROVIDERS,
    ) -> None:
        config = config or LocationConfig()
        self.provider = provider
        self.store = store
        self.sink = sink
        self.key = key
        self.battery_monitor = battery_monitor
        self.providers = tuple(providers)
        self.thresholds = BatteryThresholds.from_config(config)
        self.intervals = UpdateIntervals.from_config(config)
        self.frequency = SamplingFrequency.OFF
        self.status = SubsystemStatus.READY
        self.worker = SerialWorker("phone-location")
        self._clock = clock
        self._battery: tuple[float, bool] | None = None
        self._started = False
        self._closed = False
        self.reference = self._load_reference()

    # -- public entry points, all serialized on the worker

    def start(self) -> Future | None:
        return self.worker.submit(self._start)

    def on_fix(self, fix: LocationFix | None) -> Future | None:
        return self.worker.submit(self.process_fix, fix)

    def set_update_rate(self, gps_period: int, network_period: int) -> Future | None:
        return self.worker.submit(self._set_update_rate, gps_period, network_period)

    def on_battery_change(self, level: float, is_charging: bool) -> Future | None:
        return self.worker.submit(self._on_battery_change, level, is_charging)

    def set_battery_levels(self, minimum: float, reduced: float) -> Future | None:
        return self.worker.submit(self._set_battery_levels, minimum, reduced)

    def set_intervals(self, gps: int, gps_reduced: int, network: int, network_reduced: int) -> Future | None:
        return self.worker.submit(self._set_intervals, UpdateIntervals(gps, gps_reduced, network, network_reduced))

    def stop(self) -> None:
        """Deregister everything, then release the worker. Returns once no callback can fire."""
        self.worker.shutdown(final=self._stop)

    # -- worker-side implementation

    def _load_reference(self) -> ReferencePoint | None:
        try:
            return load_reference(self.store)
        except PersistenceError as exc:
            log_event(
                logger,
                f"stored reference point ignored: {exc}",
                level=logging.ERROR,
                subsystem=SUBSYSTEM,
                event="REFERENCE_LOAD",
                status="error",
                error_code=exc.error_code,
            )
            return None

    def _start(self) -> None:
        if self._started or self._closed:
            return
        self._started = True
        if self.battery_monitor is not None:
            try:
                self.battery_monitor.register(self.on_battery_change)
            except PermissionError:
                self._degrade("battery monitor registration denied")
        if self._battery is None:
            self._apply_frequency(SamplingFrequency.NORMAL)
        else:
            # a reading that arrived before start decides the first state
            self._apply_frequency(next_frequency(*self._battery, self.thresholds))
        if self.status is SubsystemStatus.READY:
            self.status = SubsystemStatus.CONNECTED
        log_event(logger, "location engine started", subsystem=SUBSYSTEM, event="START", status="ok")

    def _stop(self) -> None:
        if self.battery_monitor is not None and self._started:
            try:
                self.battery_monitor.unregister()
            except PermissionError:
                self._degrade("battery monitor deregistration denied")
        self._unsubscribe_all()
        self._closed = True
        self.status = SubsystemStatus.DISCONNECTED
        log_event(logger, "location engine stopped", subsystem=SUBSYSTEM, event="STOP", status="ok")

    def _degrade(self, message: str, provider: str | None = None) -> None:
        self.status = SubsystemStatus.DEGRADED
        log_event(
            logger,
            message,
            level=logging.WARNING,
            subsystem=SUBSYSTEM,
            provider=provider,
            event="PERMISSION_DENIED",
            status="degraded",
        )

    def _deliver(self, fix: LocationFix) -> None:
        # provider callbacks may come from any thread; hand them to the worker
        future = self.worker.submit(self.process_fix, fix)
        if future is not None:
            future.add_done_callback(log_failure)

    def _unsubscribe_all(self) -> None:
        for provider_id in self.providers:
            try:
                self.provider.unsubscribe(provider_id)
            except PermissionError:
                self._degrade("location unsubscribe denied", provider_id)
            except Exception as exc:
                self.status = SubsystemStatus.DEGRADED
                log_event(
                    logger,
                    f"location {provider_id} listener could not be removed: {exc!r}",
                    level=logging.ERROR,
                    subsystem=SUBSYSTEM,
                    provider=provider_id,
                    event="UNSUBSCRIBE_FAIL",
                    status="error",
                    error_code=getattr(exc, "error_code", None),
                )

    def _subscribe(self, provider_id: str, period: int) -> None:
        if period <= 0:
            log_event(
                logger,
                f"location {provider_id} gathering disabled in settings",
                subsystem=SUBSYSTEM,
                provider=provider_id,
                event="PROVIDER_DISABLED",
                status="ok",
            )
            return
        try:
            if not self.provider.is_available(provider_id):
                log_event(
                    logger,
                    f"location {provider_id} listener not found",
                    level=logging.WARNING,
                    subsystem=SUBSYSTEM,
                    provider=provider_id,
                    event="PROVIDER_UNAVAILABLE",
                    status="degraded",
                )
                return
            last_known = self.provider.last_known_fix(provider_id)
            self.provider.subscribe(provider_id, period, self._deliver)
        except PermissionError:
            self._degrade(f"location {provider_id} access denied", provider_id)
            return
        except Exception as exc:
            self.status = SubsystemStatus.DEGRADED
            log_event(
                logger,
                f"location {provider_id} listener could not be registered: {exc!r}",
                level=logging.ERROR,
                subsystem=SUBSYSTEM,
                provider=provider_id,
                event="SUBSCRIBE_FAIL",
                status="error",
                error_code=getattr(exc, "error_code", None),
            )
            return
        self.process_fix(last_known)
        log_event(
            logger,
            f"location {provider_id} listener activated and set to a period of {period}",
            subsystem=SUBSYSTEM,
            provider=provider_id,
            event="SUBSCRIBE",
            status="ok",
        )

    def _set_update_rate(self, gps_period: int, network_period: int) -> None:
        if not self._started or self._closed:
            return
        self._unsubscribe_all()
        periods = {PROVIDER_GPS: gps_period, PROVIDER_NETWORK: network_period}
        for provider_id in self.providers:
            self._subscribe(provider_id, periods.get(provider_id, network_period))

    def _apply_frequency(self, frequency: SamplingFrequency) -> None:
        previous = self.frequency
        self.frequency = frequency
        periods = self.intervals.for_frequency(frequency)
        if periods is None:
            self._unsubscribe_all()
        else:
            self._set_update_rate(*periods)
        log_event(
            logger,
            f"sampling frequency {previous.value} -> {frequency.value}",
            subsystem=SUBSYSTEM,
            event="FREQUENCY_CHANGE",
            status="ok",
        )

    def _on_battery_change(self, level: float, is_charging: bool) -> None:
        self._battery = (level, is_charging)
        if not self._started or self._closed:
            return
        frequency = next_frequency(level, is_charging, self.thresholds)
        if frequency is self.frequency:
            return
        self._apply_frequency(frequency)

    def _set_battery_levels(self, minimum: float, reduced: float) -> None:
        thresholds = BatteryThresholds(minimum=minimum, reduced=reduced)
        if thresholds == self.thresholds:
            return
        self.thresholds = thresholds
        if self._battery is not None:
            self._on_battery_change(*self._battery)

    def _set_intervals(self, intervals: UpdateIntervals) -> None:
        if intervals == self.intervals:
            return
        self.intervals = intervals
        if not self._started or self._closed:
            return
        if self._battery is None:
            frequency = SamplingFrequency.NORMAL
        else:
            frequency = next_frequency(*self._battery, self.thresholds)
        # new periods take effect even when the state is unchanged
        self._apply_frequency(frequency)

    def _establish_reference(self, fix: LocationFix) -> ReferencePoint:
        reference = reference_from_fix(fix)
        try:
            save_reference(self.store, reference)
        except PersistenceError as exc:
            log_event(
                logger,
                f"reference point kept in memory only: {exc}",
                level=logging.ERROR,
                subsystem=SUBSYSTEM,
                event="REFERENCE_PERSIST",
                status="error",
                error_code=exc.error_code,
            )
        return reference

    def process_fix(self, fix: LocationFix | None) -> RelativeLocation | None:
        """Transform one fix and append it to the sink. Runs on the worker."""
        if fix is None or self._closed:
            return None
        if not has_valid_coordinates(fix):
            log_event(
                logger,
                "location fix without valid coordinates dropped",
                level=logging.WARNING,
                subsystem=SUBSYSTEM,
                provider=str(fix.provider),
                event="FIX_INVALID",
                status="skipped",
            )
            return None

        if self.reference is None:
            self.reference = self._establish_reference(fix)

        measurement = relative_location(fix, self.reference, self._clock())
        try:
            self.sink.append(TOPIC_RELATIVE_LOCATION, self.key, measurement)
        except Exception as exc:
            log_event(
                logger,
                f"location measurement not delivered: {exc}",
                level=logging.ERROR,
                subsystem=SUBSYSTEM,
                provider=measurement.provider.value,
                event="SINK_FAIL",
                status="error",
                error_code=getattr(exc, "error_code", None),
            )
            return None

        logger.debug(
            "Location: %s %s %s %s %s %s %s %s %s",
            measurement.provider.value,
            measurement.time,
            measurement.latitude,
            measurement.longitude,
            measurement.accuracy,
            measurement.altitude,
            measurement.speed,
            measurement.bearing,
            measurement.time_received,
        )
        return measurement
