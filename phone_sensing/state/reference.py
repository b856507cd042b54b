"""Persisted per-installation reference point."""

from __future__ import annotations

import math
from decimal import Decimal, InvalidOperation

from phone_sensing.common.constants import (
    ALTITUDE_REFERENCE_KEY,
    LATITUDE_REFERENCE_KEY,
    LONGITUDE_REFERENCE_KEY,
)
from phone_sensing.common.errors import PersistenceError
from phone_sensing.common.models import ReferencePoint
from phone_sensing.state.store import KeyValueStore, persist_with_retry


def load_reference(store: KeyValueStore) -> ReferencePoint | None:
    latitude = store.get(LATITUDE_REFERENCE_KEY)
    longitude = store.get(LONGITUDE_REFERENCE_KEY)
    if latitude is None or longitude is None:
        return None
    altitude_raw = store.get(ALTITUDE_REFERENCE_KEY)
    try:
        altitude = float(altitude_raw) if altitude_raw is not None else math.nan
        return ReferencePoint(Decimal(latitude), Decimal(longitude), altitude)
    except (InvalidOperation, ValueError) as exc:
        raise PersistenceError(f"Stored reference point is unreadable: {exc}") from exc


def save_reference(store: KeyValueStore, reference: ReferencePoint) -> None:
    persist_with_retry(
        store,
        {
            LATITUDE_REFERENCE_KEY: str(reference.latitude),
            LONGITUDE_REFERENCE_KEY: str(reference.longitude),
            ALTITUDE_REFERENCE_KEY: repr(reference.altitude),
        },
    )
