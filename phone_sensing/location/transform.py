"""Relative-coordinate transform.

Absolute coordinates are converted to offsets from a per-installation reference
point. Latitude and longitude are subtracted as decimals, so large absolute
values do not lose precision and ``offset + reference`` gives back the
original coordinate exactly. Altitude is a plain float difference.
"""

from __future__ import annotations

import math
from decimal import Decimal, InvalidOperation

from phone_sensing.common.constants import PROVIDER_GPS, PROVIDER_NETWORK
from phone_sensing.common.models import (
    Coordinate,
    LocationFix,
    LocationProvider,
    ReferencePoint,
    RelativeLocation,
)

PROVIDER_TYPES = {
    PROVIDER_GPS: LocationProvider.GPS,
    PROVIDER_NETWORK: LocationProvider.NETWORK,
}


def provider_type(provider_id: object) -> LocationProvider:
    if not isinstance(provider_id, str):
        return LocationProvider.OTHER
    return PROVIDER_TYPES.get(provider_id.lower(), LocationProvider.OTHER)


def to_decimal(value: Coordinate | None) -> Decimal | None:
    """Exact decimal for a coordinate; None for missing, NaN or infinite values.

    Floats go through their shortest repr, so 52.1 becomes Decimal("52.1")
    rather than its binary expansion.
    """
    if value is None:
        return None
    try:
        if isinstance(value, Decimal):
            result = value
        elif isinstance(value, float):
            result = Decimal(repr(value))
        else:
            result = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return None
    if not result.is_finite():
        return None
    return result


def optional_float(value: object) -> float | None:
    if value is None:
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(result):
        return None
    return result


def has_valid_coordinates(fix: LocationFix) -> bool:
    return to_decimal(fix.latitude) is not None and to_decimal(fix.longitude) is not None


def reference_from_fix(fix: LocationFix) -> ReferencePoint:
    latitude = to_decimal(fix.latitude)
    longitude = to_decimal(fix.longitude)
    if latitude is None or longitude is None:
        raise ValueError("fix has no valid coordinates")
    altitude = optional_float(fix.altitude)
    return ReferencePoint(latitude, longitude, math.nan if altitude is None else altitude)


def relative_location(fix: LocationFix, reference: ReferencePoint, time_received: float) -> RelativeLocation:
    latitude = to_decimal(fix.latitude)
    longitude = to_decimal(fix.longitude)
    if latitude is None or longitude is None:
        raise ValueError("fix has no valid coordinates")

    altitude = optional_float(fix.altitude)
    relative_altitude = None
    if altitude is not None and reference.has_altitude:
        relative_altitude = altitude - reference.altitude

    return RelativeLocation(
        time=fix.timestamp_ms / 1000.0,
        time_received=time_received,
        provider=provider_type(fix.provider),
        latitude=latitude - reference.latitude,
        longitude=longitude - reference.longitude,
        altitude=relative_altitude,
        accuracy=optional_float(fix.accuracy),
        speed=optional_float(fix.speed),
        bearing=optional_float(fix.bearing),
    )
