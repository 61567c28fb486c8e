"""Learned location models."""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from fleetsense.models.trip import GeoPoint


class LocationType(StrEnum):
    HOME = "home"
    WORK = "work"
    PARKING = "parking"
    FREQUENT = "frequent"
    UNKNOWN = "unknown"


class TimeOfDay(StrEnum):
    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"
    NIGHT = "night"

    @classmethod
    def from_hour(cls, hour: int) -> TimeOfDay:
        if 5 <= hour <= 11:
            return cls.MORNING
        if 12 <= hour <= 16:
            return cls.AFTERNOON
        if 17 <= hour <= 21:
            return cls.EVENING
        return cls.NIGHT


class DwellKind(StrEnum):
    PARKING = "parking"
    IDLE = "idle"


class DwellCandidate(BaseModel):
    """A parking or idle episode long enough to count as a visit."""

    model_config = ConfigDict(frozen=True)

    vehicle_id: str
    latitude: float
    longitude: float
    start: datetime
    end: datetime
    kind: DwellKind

    @property
    def duration_minutes(self) -> float:
        return (self.end - self.start).total_seconds() / 60.0

    @property
    def key(self) -> tuple[str, datetime]:
        return self.vehicle_id, self.start


class VisitPattern(BaseModel):
    """Visit statistics for one time-of-day bucket of a learned location."""

    model_config = ConfigDict(frozen=True)

    visit_count: int = 0
    avg_duration_minutes: float = 0.0
    typical_hour: float = 0.0


def _new_location_id() -> str:
    return uuid.uuid4().hex


class LearnedLocation(BaseModel):
    """A spatial cluster of repeated dwell points for one vehicle.

    The centroid moves to the midpoint of the old centroid and each newly
    merged visit, so recent visits pull harder than a running mean would.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_location_id)
    vehicle_id: str
    centroid: GeoPoint
    radius_m: float
    visit_count: int = 1
    total_duration_minutes: float = 0.0
    first_visit: datetime
    last_visit: datetime
    location_type: LocationType = LocationType.UNKNOWN
    confidence: float = 0.0
    typical_arrival_hour: float | None = None
    visits_per_week: float = 0.0
    custom_label: str | None = None
    auto_detected: bool = True
    patterns: dict[TimeOfDay, VisitPattern] = Field(default_factory=dict)

    @property
    def typical_duration_minutes(self) -> float:
        if self.visit_count <= 0:
            return 0.0
        return self.total_duration_minutes / self.visit_count

    @property
    def display_name(self) -> str:
        if self.custom_label:
            return self.custom_label
        return self.location_type.value.capitalize()


class LocationContext(BaseModel):
    """Answer to "is the vehicle at a known place right now"."""

    model_config = ConfigDict(frozen=True)

    at_known_location: bool
    location: LearnedLocation | None = None
    distance_m: float | None = None
    last_visit_days_ago: float | None = None
