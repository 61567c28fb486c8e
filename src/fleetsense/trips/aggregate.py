"""Trip aggregation from a closed run of samples."""

from __future__ import annotations

from collections.abc import Sequence

from fleetsense._geo import path_length_km
from fleetsense.exceptions import ComputationError
from fleetsense.models.position import PositionSample
from fleetsense.models.trip import DistanceMethod, GeoPoint, Trip, TripSource, trip_id


def measure_distance(samples: Sequence[PositionSample]) -> tuple[float, DistanceMethod]:
    """Distance covered by *samples*.

    The odometer delta between the first and last sample wins when it is
    positive; otherwise consecutive great-circle legs are summed.
    """
    first, last = samples[0], samples[-1]
    if first.odometer_total is not None and last.odometer_total is not None:
        delta = last.odometer_total - first.odometer_total
        if delta > 0:
            return delta, DistanceMethod.ODOMETER
    return path_length_km(s.point for s in samples), DistanceMethod.HAVERSINE


def build_trip(
    vehicle_id: str,
    source: TripSource,
    samples: Sequence[PositionSample],
    *,
    min_distance_km: float,
) -> Trip:
    """Aggregate an ordered run of samples into a :class:`Trip`.

    Raises
    ------
    ComputationError
        If the run has no positive duration, or its great-circle distance
        is below *min_distance_km*.
    """
    if len(samples) < 2:
        raise ComputationError(f"trip needs at least two samples, got {len(samples)}")
    first, last = samples[0], samples[-1]
    duration = (last.timestamp - first.timestamp).total_seconds()
    if duration <= 0:
        raise ComputationError(f"non-positive trip duration for vehicle={vehicle_id} at {first.timestamp}")

    distance, method = measure_distance(samples)
    if method == DistanceMethod.HAVERSINE and distance < min_distance_km:
        raise ComputationError(f"trip distance {distance:.3f} km below noise floor {min_distance_km} km")

    speeds = [s.speed for s in samples]
    return Trip(
        id=trip_id(vehicle_id, source, first.timestamp),
        vehicle_id=vehicle_id,
        start_time=first.timestamp,
        end_time=last.timestamp,
        start_point=GeoPoint(latitude=first.latitude, longitude=first.longitude),
        end_point=GeoPoint(latitude=last.latitude, longitude=last.longitude),
        distance_km=round(distance, 3),
        max_speed_kmh=max(speeds),
        avg_speed_kmh=round(sum(speeds) / len(speeds), 2),
        duration_seconds=duration,
        source_method=source,
        distance_method=method,
        point_count=len(samples),
    )
