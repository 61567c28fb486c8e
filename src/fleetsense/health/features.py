"""Daily health feature aggregation.

Everything here is a pure function of one vehicle-day of samples, trips
and events, so recomputing a day with the same inputs gives the same row.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import date, datetime, time, timedelta, tzinfo

from fleetsense._constants import (
    DEFAULT_EXPECTED_POINTS,
    LOW_SAMPLE_DAY_POINTS,
    MAX_EXPECTED_POINTS,
    MIN_EXPECTED_POINTS,
)
from fleetsense._geo import haversine_km
from fleetsense.config import PipelineConfig
from fleetsense.exceptions import ComputationError
from fleetsense.ingestion.normalize import safe_float
from fleetsense.models.event import Event, EventType
from fleetsense.models.health import DailyHealthFeature
from fleetsense.models.position import PositionSample
from fleetsense.models.trip import Trip, TripSource
from fleetsense.trips.strategies import ordered_samples

# Drift: near-stationary sample that still moved this far within this long.
_DRIFT_SPEED_KMH = 3.0
_DRIFT_DISTANCE_KM = 0.2
_DRIFT_MAX_GAP_SECONDS = 600.0
_JUMP_MIN_DISTANCE_KM = 1.0

_HARSH_TYPES = frozenset({EventType.HARSH_BRAKING, EventType.RAPID_ACCELERATION})


def day_window(day: date, tz: tzinfo) -> tuple[datetime, datetime]:
    """``[start, end)`` of a calendar day in *tz*."""
    start = datetime.combine(day, time.min, tzinfo=tz)
    return start, start + timedelta(days=1)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def compute_daily_features(
    vehicle_id: str,
    day: date,
    samples: Iterable[PositionSample],
    trips: Iterable[Trip],
    events: Iterable[Event],
    *,
    config: PipelineConfig,
    trip_source: TripSource = TripSource.IGNITION,
) -> DailyHealthFeature:
    """Aggregate one vehicle-day into a :class:`DailyHealthFeature`.

    Inputs are filtered to *vehicle_id* and to the day window in the
    configured timezone, so callers may pass wider collections.

    Raises
    ------
    ComputationError
        If the vehicle has no samples, trips or events that day.
    """
    start, end = day_window(day, config.tzinfo)

    points: Sequence[PositionSample] = [
        s for s in ordered_samples(samples).get(vehicle_id, []) if start <= s.timestamp < end
    ]
    day_trips = [
        t
        for t in trips
        if t.vehicle_id == vehicle_id and t.source_method == trip_source and start <= t.start_time < end
    ]
    day_events = [e for e in events if e.vehicle_id == vehicle_id and start <= e.created_at < end]
    if not points and not day_trips and not day_events:
        raise ComputationError(f"no activity for vehicle={vehicle_id} on {day.isoformat()}")

    intervals: list[float] = []
    jumps = 0
    drift_points = 0
    for previous, current in zip(points, points[1:], strict=False):
        seconds = (current.timestamp - previous.timestamp).total_seconds()
        distance = haversine_km(previous.latitude, previous.longitude, current.latitude, current.longitude)
        intervals.append(seconds)
        implied_speed = distance / (seconds / 3600.0) if seconds > 0 else 0.0
        if implied_speed > config.impossible_speed_kmh and distance > _JUMP_MIN_DISTANCE_KM:
            jumps += 1
        if current.speed < _DRIFT_SPEED_KMH and distance > _DRIFT_DISTANCE_KM and seconds <= _DRIFT_MAX_GAP_SECONDS:
            drift_points += 1

    points_count = len(points)
    transitions = len(intervals)
    avg_interval = sum(intervals) / transitions if transitions else None
    avg_interval_minutes = avg_interval / 60.0 if avg_interval is not None else 0.0
    if avg_interval_minutes > 0:
        expected = int(_clamp(1440.0 / avg_interval_minutes, MIN_EXPECTED_POINTS, MAX_EXPECTED_POINTS))
    else:
        expected = DEFAULT_EXPECTED_POINTS
    completeness = _clamp(points_count * 100.0 / expected, 0.0, 100.0)

    speeding = sum(1 for s in points if s.speed > config.speed_limit_kmh)
    batteries = [s.battery_percent for s in points if s.battery_percent is not None]

    idle_events = [e for e in day_events if e.event_type == EventType.IDLE_TOO_LONG]
    idle_values = [v for v in (safe_float(e.metadata.get("idle_minutes")) for e in idle_events) if v is not None]

    return DailyHealthFeature(
        vehicle_id=vehicle_id,
        day=day,
        points_count=points_count,
        transition_count=transitions,
        avg_sampling_interval_seconds=round(avg_interval, 2) if avg_interval is not None else None,
        max_gap_minutes=round(max(intervals) / 60.0, 2) if intervals else 0.0,
        impossible_jump_count=jumps,
        gps_drift_ratio=round(drift_points / transitions, 4) if transitions else 0.0,
        speeding_exposure_pct=round(speeding * 100.0 / points_count, 2) if points_count else 0.0,
        trip_count=len(day_trips),
        distance_km=round(sum(t.distance_km for t in day_trips), 2),
        moving_minutes=round(sum(t.duration_seconds for t in day_trips) / 60.0, 2),
        idle_minutes=round(sum(idle_values) / len(idle_values), 2) if idle_values else 0.0,
        idle_event_count=len(idle_events),
        overspeed_event_count=sum(1 for e in day_events if e.event_type == EventType.OVERSPEEDING),
        harsh_event_count=sum(1 for e in day_events if e.event_type in _HARSH_TYPES),
        offline_event_count=sum(1 for e in day_events if e.event_type == EventType.OFFLINE),
        avg_battery=round(sum(batteries) / len(batteries), 2) if batteries else None,
        min_battery=min(batteries) if batteries else None,
        expected_points=expected,
        data_completeness_pct=round(completeness, 2),
        low_sample_day=points_count < LOW_SAMPLE_DAY_POINTS,
    )
