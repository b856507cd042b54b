"""Battery-driven sampling-rate state machine."""

from __future__ import annotations

from dataclasses import dataclass

from phone_sensing.common.config_loader import LocationConfig
from phone_sensing.common.models import SamplingFrequency


@dataclass(frozen=True)
class BatteryThresholds:
    minimum: float
    reduced: float

    @classmethod
    def from_config(cls, config: LocationConfig) -> "BatteryThresholds":
        return cls(minimum=config.battery_level_minimum, reduced=config.battery_level_reduced)


@dataclass(frozen=True)
class UpdateIntervals:
    gps: int
    gps_reduced: int
    network: int
    network_reduced: int

    @classmethod
    def from_config(cls, config: LocationConfig) -> "UpdateIntervals":
        return cls(
            gps=config.gps_interval,
            gps_reduced=config.gps_interval_reduced,
            network=config.network_interval,
            network_reduced=config.network_interval_reduced,
        )

    def for_frequency(self, frequency: SamplingFrequency) -> tuple[int, int] | None:
        """(gps, network) periods in seconds, or None when sampling is off."""
        if frequency is SamplingFrequency.NORMAL:
            return self.gps, self.network
        if frequency is SamplingFrequency.REDUCED:
            return self.gps_reduced, self.network_reduced
        return None


def next_frequency(level: float, is_charging: bool, thresholds: BatteryThresholds) -> SamplingFrequency:
    if is_charging:
        return SamplingFrequency.NORMAL
    if level < thresholds.minimum:
        return SamplingFrequency.OFF
    if level < thresholds.reduced:
        return SamplingFrequency.REDUCED
    return SamplingFrequency.NORMAL
