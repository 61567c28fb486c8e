"""Data models for samples and derived records."""

from fleetsense.models._base import FleetBaseModel, FleetTimestamp
from fleetsense.models.event import Event, EventSeverity, EventStatistics, EventType
from fleetsense.models.health import (
    ComponentScores,
    DailyHealthFeature,
    DailyHealthScore,
    HealthSweepResult,
    HealthTrend,
    SweepStatus,
)
from fleetsense.models.location import (
    DwellCandidate,
    DwellKind,
    LearnedLocation,
    LocationContext,
    LocationType,
    TimeOfDay,
    VisitPattern,
)
from fleetsense.models.position import PositionSample
from fleetsense.models.trip import DailyMileage, DistanceMethod, GeoPoint, Trip, TripSource, trip_id

__all__ = [
    "ComponentScores",
    "DailyHealthFeature",
    "DailyHealthScore",
    "DailyMileage",
    "DistanceMethod",
    "DwellCandidate",
    "DwellKind",
    "Event",
    "EventSeverity",
    "EventStatistics",
    "EventType",
    "FleetBaseModel",
    "FleetTimestamp",
    "GeoPoint",
    "HealthSweepResult",
    "HealthTrend",
    "LearnedLocation",
    "LocationContext",
    "LocationType",
    "PositionSample",
    "SweepStatus",
    "TimeOfDay",
    "Trip",
    "TripSource",
    "VisitPattern",
    "trip_id",
]
