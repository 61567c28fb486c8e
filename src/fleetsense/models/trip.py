"""Trip models."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, model_validator

# Fixed namespace so trip ids are stable across runs.
_TRIP_NAMESPACE = uuid.UUID("6f1c2b0e-4f7d-5a9e-9c1b-2d8e7f3a4b5c")


class TripSource(StrEnum):
    """Segmentation strategy that produced a trip."""

    IGNITION = "ignition"
    IDLE_GAP = "idle_gap"


class DistanceMethod(StrEnum):
    ODOMETER = "odometer"
    HAVERSINE = "haversine"


class GeoPoint(BaseModel):
    model_config = ConfigDict(frozen=True)

    latitude: float
    longitude: float


def trip_id(vehicle_id: str, source: TripSource, start_time: datetime) -> str:
    """Deterministic trip id for ``(vehicle, strategy, start)``."""
    return uuid.uuid5(_TRIP_NAMESPACE, f"{vehicle_id}|{source.value}|{start_time.isoformat()}").hex


class Trip(BaseModel):
    """A closed episode of vehicle movement.

    Parameters
    ----------
    distance_km : float
        Odometer delta when positive, otherwise summed great-circle legs.
    duration_seconds : float
        ``end_time - start_time`` in seconds.
    source_method : TripSource
        Strategy that produced the trip.
    distance_method : DistanceMethod
        How ``distance_km`` was measured.
    point_count : int
        Samples inside the trip window.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    vehicle_id: str
    start_time: datetime
    end_time: datetime
    start_point: GeoPoint
    end_point: GeoPoint
    distance_km: float = Field(ge=0.0)
    max_speed_kmh: float = Field(ge=0.0)
    avg_speed_kmh: float = Field(ge=0.0)
    duration_seconds: float
    source_method: TripSource
    distance_method: DistanceMethod
    point_count: int

    @model_validator(mode="after")
    def _check_interval(self) -> Trip:
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self

    @property
    def duration_minutes(self) -> float:
        return self.duration_seconds / 60.0


class DailyMileage(BaseModel):
    """Per-day driving summary for one vehicle."""

    model_config = ConfigDict(frozen=True)

    day: date
    distance_km: float
    trip_count: int
    duration_minutes: float
