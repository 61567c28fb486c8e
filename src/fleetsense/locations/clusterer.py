"""Incremental spatial clustering of dwell points into learned locations."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime, timedelta

from fleetsense._constants import OVERNIGHT_END_HOUR, OVERNIGHT_START_HOUR
from fleetsense._geo import haversine_m, midpoint
from fleetsense.config import PipelineConfig
from fleetsense.models.location import (
    DwellCandidate,
    LearnedLocation,
    LocationType,
    TimeOfDay,
    VisitPattern,
)
from fleetsense.models.position import PositionSample
from fleetsense.models.trip import GeoPoint

_logger = logging.getLogger(__name__)

_WEEK = timedelta(days=7)


def _is_overnight(hour: int) -> bool:
    return hour >= OVERNIGHT_START_HOUR or hour < OVERNIGHT_END_HOUR


def _update_pattern(pattern: VisitPattern | None, hour: int, duration_minutes: float) -> VisitPattern:
    if pattern is None:
        return VisitPattern(visit_count=1, avg_duration_minutes=duration_minutes, typical_hour=float(hour))
    count = pattern.visit_count + 1
    return VisitPattern(
        visit_count=count,
        avg_duration_minutes=(pattern.avg_duration_minutes * pattern.visit_count + duration_minutes) / count,
        typical_hour=(pattern.typical_hour * pattern.visit_count + hour) / count,
    )


def _visits_per_week(visit_count: int, first_visit: datetime, last_visit: datetime) -> float:
    weeks = max((last_visit - first_visit) / _WEEK, 1.0)
    return round(visit_count / weeks, 2)


class LocationClusterer:
    """Merges dwell candidates into per-vehicle clusters and classifies them.

    Both operations are pure: they take the current clusters (or one
    cluster plus its position history) and return new frozen models.
    """

    def __init__(self, config: PipelineConfig) -> None:
        self._config = config
        self._tz = config.tzinfo

    def _local_hour(self, ts: datetime) -> int:
        return ts.astimezone(self._tz).hour

    def nearest(
        self,
        latitude: float,
        longitude: float,
        locations: Sequence[LearnedLocation],
    ) -> LearnedLocation | None:
        """Closest cluster whose centre lies within the merge radius."""
        best: LearnedLocation | None = None
        best_distance = self._config.cluster_radius_m
        for location in locations:
            distance = haversine_m(latitude, longitude, location.centroid.latitude, location.centroid.longitude)
            if distance <= best_distance:
                best, best_distance = location, distance
        return best

    def merge(self, candidate: DwellCandidate, locations: Sequence[LearnedLocation]) -> LearnedLocation:
        """Fold one dwell into the nearest cluster, or start a new cluster."""
        hour = self._local_hour(candidate.start)
        bucket = TimeOfDay.from_hour(hour)
        duration = candidate.duration_minutes
        existing = self.nearest(candidate.latitude, candidate.longitude, locations)

        if existing is None:
            _logger.debug(
                "New learned location for vehicle=%s at (%.6f, %.6f)",
                candidate.vehicle_id,
                candidate.latitude,
                candidate.longitude,
            )
            return LearnedLocation(
                vehicle_id=candidate.vehicle_id,
                centroid=GeoPoint(latitude=candidate.latitude, longitude=candidate.longitude),
                radius_m=self._config.cluster_radius_m,
                visit_count=1,
                total_duration_minutes=duration,
                first_visit=candidate.start,
                last_visit=candidate.start,
                typical_arrival_hour=float(hour),
                visits_per_week=1.0,
                patterns={bucket: _update_pattern(None, hour, duration)},
            )

        lat, lon = midpoint(
            existing.centroid.latitude,
            existing.centroid.longitude,
            candidate.latitude,
            candidate.longitude,
        )
        visit_count = existing.visit_count + 1
        first_visit = min(existing.first_visit, candidate.start)
        last_visit = max(existing.last_visit, candidate.start)
        previous_hour = existing.typical_arrival_hour if existing.typical_arrival_hour is not None else float(hour)
        patterns = dict(existing.patterns)
        patterns[bucket] = _update_pattern(patterns.get(bucket), hour, duration)

        return existing.model_copy(
            update={
                "centroid": GeoPoint(latitude=lat, longitude=lon),
                "visit_count": visit_count,
                "total_duration_minutes": existing.total_duration_minutes + duration,
                "first_visit": first_visit,
                "last_visit": last_visit,
                "typical_arrival_hour": (previous_hour * existing.visit_count + hour) / visit_count,
                "visits_per_week": _visits_per_week(visit_count, first_visit, last_visit),
                "patterns": patterns,
            }
        )

    def _is_strong(self, location: LearnedLocation, bucket: TimeOfDay) -> bool:
        pattern = location.patterns.get(bucket)
        if pattern is None or location.visit_count <= 0:
            return False
        share = pattern.visit_count / location.visit_count
        return pattern.visit_count >= 2 and share >= self._config.pattern_strong_share

    def classify(self, location: LearnedLocation, history: Sequence[PositionSample]) -> LearnedLocation:
        """Reclassify a cluster from its visit statistics.

        *history* is the vehicle's recent position history; only samples
        within the cluster radius are used. User-labelled clusters and
        clusters with too few visits are returned unchanged.
        """
        if not location.auto_detected or location.visit_count < self._config.classification_min_visits:
            return location

        hours = [
            self._local_hour(s.timestamp)
            for s in history
            if haversine_m(s.latitude, s.longitude, location.centroid.latitude, location.centroid.longitude)
            <= location.radius_m
        ]
        if hours:
            overnight_fraction = sum(1 for h in hours if _is_overnight(h)) / len(hours)
            mean_hour = sum(hours) / len(hours)
        else:
            night = location.patterns.get(TimeOfDay.NIGHT)
            overnight_fraction = (night.visit_count if night else 0) / location.visit_count
            mean_hour = location.typical_arrival_hour if location.typical_arrival_hour is not None else 12.0

        visits = location.visit_count
        if self._is_strong(location, TimeOfDay.MORNING) and self._is_strong(location, TimeOfDay.EVENING):
            location_type = LocationType.FREQUENT
        elif overnight_fraction > 0.7 and visits >= 10:
            location_type = LocationType.HOME
        elif 8 <= mean_hour <= 18 and visits >= 15:
            location_type = LocationType.WORK
        elif location.typical_duration_minutes < 30:
            location_type = LocationType.PARKING
        else:
            location_type = LocationType.FREQUENT

        if location_type != location.location_type:
            _logger.debug(
                "Location %s for vehicle=%s classified %s -> %s",
                location.id,
                location.vehicle_id,
                location.location_type,
                location_type,
            )
        return location.model_copy(
            update={"location_type": location_type, "confidence": min(visits / 20.0, 1.0)}
        )
