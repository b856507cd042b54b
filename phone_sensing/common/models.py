"""Data models used across the sensing subsystems."""

from __future__ import annotations

import base64
import math
from dataclasses import asdict, dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Union

Coordinate = Union[float, str, Decimal]


class LocationProvider(str, Enum):
    GPS = "GPS"
    NETWORK = "NETWORK"
    OTHER = "OTHER"


class SamplingFrequency(str, Enum):
    OFF = "OFF"
    REDUCED = "REDUCED"
    NORMAL = "NORMAL"


class SubsystemStatus(str, Enum):
    READY = "READY"
    CONNECTED = "CONNECTED"
    DEGRADED = "DEGRADED"
    DISCONNECTED = "DISCONNECTED"


class PhoneCallType(str, Enum):
    INCOMING = "INCOMING"
    OUTGOING = "OUTGOING"
    VOICEMAIL = "VOICEMAIL"
    MISSED = "MISSED"
    UNKNOWN = "UNKNOWN"


class PhoneSmsType(str, Enum):
    INCOMING = "INCOMING"
    OUTGOING = "OUTGOING"
    OTHER = "OTHER"
    UNKNOWN = "UNKNOWN"


def normalize_float(value: float | None, *, limit: float = 1e308) -> float | None:
    """Replace special float values with regular numbers; NaN becomes unset."""
    if value is None or math.isnan(value):
        return None
    if math.isinf(value):
        return limit if value > 0 else -limit
    return value


def _serialize(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return normalize_float(float(value))
    if isinstance(value, float):
        return normalize_float(value)
    if isinstance(value, bytes):
        return base64.b64encode(value).decode("ascii")
    return value


@dataclass(frozen=True)
class ObservationKey:
    project_id: str | None
    user_id: str
    source_id: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class LocationFix:
    """Raw fix as delivered by a positioning provider.

    Optional measurements use None or NaN for "unset", never zero.
    """

    timestamp_ms: int
    provider: str
    latitude: Coordinate
    longitude: Coordinate
    altitude: float | None = None
    accuracy: float | None = None
    speed: float | None = None
    bearing: float | None = None


@dataclass(frozen=True)
class ReferencePoint:
    latitude: Decimal
    longitude: Decimal
    altitude: float = math.nan

    @property
    def has_altitude(self) -> bool:
        return not math.isnan(self.altitude)


@dataclass(frozen=True)
class Measurement:
    def to_dict(self) -> dict[str, Any]:
        return {key: _serialize(value) for key, value in self.__dict__.items()}


@dataclass(frozen=True)
class RelativeLocation(Measurement):
    time: float
    time_received: float
    provider: LocationProvider
    latitude: Decimal
    longitude: Decimal
    altitude: float | None
    accuracy: float | None
    speed: float | None
    bearing: float | None


@dataclass(frozen=True)
class AnonymizedTarget:
    key: bytes | None
    is_non_numeric: bool
    length: int


@dataclass(frozen=True)
class PhoneCall(Measurement):
    time: float
    time_received: float
    duration: float | None
    target: bytes | None
    type: PhoneCallType
    target_is_contact: bool | None
    target_is_non_numeric: bool
    target_length: int


@dataclass(frozen=True)
class PhoneSms(Measurement):
    time: float
    time_received: float
    target: bytes | None
    type: PhoneSmsType
    length: int | None
    target_is_contact: bool | None
    target_is_non_numeric: bool
    target_length: int


@dataclass(frozen=True)
class PhoneSmsUnread(Measurement):
    time: float
    time_received: float
    unread_count: int
