"""Deterministic in-memory insight store.

This is the only component allowed to write derived records (events,
trips, learned locations, daily health). Readers get copies of frozen
models, never live references to internal containers.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from datetime import UTC, date, datetime, timedelta, tzinfo

from fleetsense._geo import haversine_m
from fleetsense.models.event import Event, EventSeverity, EventStatistics, EventType
from fleetsense.models.health import DailyHealthFeature, DailyHealthScore
from fleetsense.models.location import LearnedLocation, LocationContext, LocationType
from fleetsense.models.trip import DailyMileage, Trip, TripSource
from fleetsense.state.policy import is_expired, should_purge, within_cooldown

_logger = logging.getLogger(__name__)

EventKey = tuple[str, EventType]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class InsightStore:
    """In-memory store for derived per-vehicle records.

    Event inserts are serialized per ``(vehicle_id, event_type)`` so the
    cooldown check and the insert behave as one step even when samples
    for the same vehicle are delivered from several threads.
    """

    def __init__(self, *, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock
        self._events: dict[str, Event] = {}
        self._events_by_key: dict[EventKey, list[str]] = {}
        self._key_locks: dict[EventKey, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._trips: dict[str, Trip] = {}
        self._locations: dict[str, LearnedLocation] = {}
        self._learned_dwells: set[tuple[str, datetime]] = set()
        self._features: dict[tuple[str, date], DailyHealthFeature] = {}
        self._scores: dict[tuple[str, date], DailyHealthScore] = {}

    def _key_lock(self, key: EventKey) -> threading.Lock:
        with self._locks_guard:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._key_locks[key] = lock
            return lock

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def insert_event(self, event: Event, *, cooldown: timedelta) -> bool:
        """Insert *event* unless one of the same type is inside the cooldown.

        Returns ``False`` when the event was suppressed as a duplicate.
        """
        key = event.debounce_key
        with self._key_lock(key):
            for existing_id in self._events_by_key.get(key, ()):
                existing = self._events.get(existing_id)
                if existing is not None and within_cooldown(existing.created_at, event.created_at, cooldown):
                    _logger.debug(
                        "Suppressed %s for vehicle=%s (cooldown, existing=%s)",
                        event.event_type,
                        event.vehicle_id,
                        existing.id,
                    )
                    return False
            self._events[event.id] = event
            self._events_by_key.setdefault(key, []).append(event.id)
        return True

    def get_event(self, event_id: str) -> Event | None:
        return self._events.get(event_id)

    def query_events(
        self,
        vehicle_id: str,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
        acknowledged: bool | None = None,
        severity: EventSeverity | None = None,
        event_type: EventType | None = None,
        limit: int | None = None,
    ) -> list[Event]:
        """Events for a vehicle, newest first.

        ``start`` is inclusive and ``end`` exclusive; ``None`` filters are
        not applied.
        """
        matches = [
            event
            for event in self._events.values()
            if event.vehicle_id == vehicle_id
            and (start is None or event.created_at >= start)
            and (end is None or event.created_at < end)
            and (acknowledged is None or event.acknowledged == acknowledged)
            and (severity is None or event.severity == severity)
            and (event_type is None or event.event_type == event_type)
        ]
        matches.sort(key=lambda e: (e.created_at, e.id), reverse=True)
        return matches if limit is None else matches[:limit]

    def get_unacknowledged_events(
        self,
        vehicle_id: str,
        *,
        now: datetime | None = None,
        limit: int = 50,
    ) -> list[Event]:
        """Unacknowledged events that have not expired yet."""
        now = now or self._clock()
        pending = self.query_events(vehicle_id, acknowledged=False)
        return [event for event in pending if not is_expired(now, event.expires_at)][:limit]

    def acknowledge_event(self, event_id: str, *, now: datetime | None = None) -> bool:
        """Mark an event acknowledged.

        Acknowledging an already acknowledged event is a no-op that still
        returns ``True``. Unknown ids return ``False``.
        """
        event = self._events.get(event_id)
        if event is None:
            return False
        if event.acknowledged:
            return True
        with self._key_lock(event.debounce_key):
            self._events[event_id] = event.model_copy(
                update={"acknowledged": True, "acknowledged_at": now or self._clock()}
            )
        return True

    def event_statistics(
        self,
        vehicle_id: str,
        *,
        days: int = 7,
        now: datetime | None = None,
    ) -> list[EventStatistics]:
        """Counts per ``(type, severity)`` over the last *days*, most frequent first."""
        since = (now or self._clock()) - timedelta(days=days)
        buckets: dict[tuple[EventType, EventSeverity], list[Event]] = {}
        for event in self.query_events(vehicle_id, start=since):
            buckets.setdefault((event.event_type, event.severity), []).append(event)

        stats = [
            EventStatistics(
                event_type=event_type,
                severity=severity,
                count=len(events),
                acknowledged_count=sum(1 for e in events if e.acknowledged),
                last_occurrence=max(e.created_at for e in events),
            )
            for (event_type, severity), events in buckets.items()
        ]
        stats.sort(key=lambda s: (-s.count, s.event_type.value, s.severity.value))
        return stats

    def purge_events(self, *, now: datetime | None = None) -> int:
        """Apply the retention policy; returns the number of deleted events."""
        now = now or self._clock()
        doomed = [event for event in self._events.values() if should_purge(event, now)]
        for event in doomed:
            with self._key_lock(event.debounce_key):
                self._events.pop(event.id, None)
                ids = self._events_by_key.get(event.debounce_key)
                if ids is not None and event.id in ids:
                    ids.remove(event.id)
        if doomed:
            _logger.debug("Purged %d events", len(doomed))
        return len(doomed)

    # ------------------------------------------------------------------
    # Trips
    # ------------------------------------------------------------------

    def replace_trips(
        self,
        vehicle_id: str,
        source: TripSource,
        trips: Iterable[Trip],
        *,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> int:
        """Replace a vehicle's trips for one strategy inside ``[start, end)``.

        Re-segmenting a window therefore never leaves stale boundaries
        behind. Returns the number of trips now stored for the window.
        """
        stale = [
            trip.id
            for trip in self._trips.values()
            if trip.vehicle_id == vehicle_id
            and trip.source_method == source
            and (start is None or trip.start_time >= start)
            and (end is None or trip.start_time < end)
        ]
        for trip_id in stale:
            del self._trips[trip_id]
        count = 0
        for trip in trips:
            self._trips[trip.id] = trip
            count += 1
        return count

    def query_trips(
        self,
        vehicle_id: str,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
        source: TripSource | None = None,
    ) -> list[Trip]:
        """Trips whose start time falls in ``[start, end)``, oldest first."""
        matches = [
            trip
            for trip in self._trips.values()
            if trip.vehicle_id == vehicle_id
            and (start is None or trip.start_time >= start)
            and (end is None or trip.start_time < end)
            and (source is None or trip.source_method == source)
        ]
        matches.sort(key=lambda t: (t.start_time, t.source_method.value))
        return matches

    def daily_mileage(
        self,
        vehicle_id: str,
        *,
        end_day: date,
        days: int = 7,
        source: TripSource = TripSource.IGNITION,
        tz: tzinfo = UTC,
    ) -> list[DailyMileage]:
        """Distance, trip count and driving minutes per day, newest day first."""
        first_day = end_day - timedelta(days=days - 1)
        totals: dict[date, list[Trip]] = {}
        for trip in self.query_trips(vehicle_id, source=source):
            day = trip.start_time.astimezone(tz).date()
            if first_day <= day <= end_day:
                totals.setdefault(day, []).append(trip)
        return [
            DailyMileage(
                day=day,
                distance_km=round(sum(t.distance_km for t in trips), 3),
                trip_count=len(trips),
                duration_minutes=round(sum(t.duration_minutes for t in trips), 2),
            )
            for day, trips in sorted(totals.items(), reverse=True)
        ]

    # ------------------------------------------------------------------
    # Learned locations
    # ------------------------------------------------------------------

    def get_locations(self, vehicle_id: str) -> list[LearnedLocation]:
        return [loc for loc in self._locations.values() if loc.vehicle_id == vehicle_id]

    def get_location(self, location_id: str) -> LearnedLocation | None:
        return self._locations.get(location_id)

    def save_location(self, location: LearnedLocation) -> None:
        self._locations[location.id] = location

    def claim_dwell(self, key: tuple[str, datetime]) -> bool:
        """Record that a dwell has been learned; ``False`` if it already was."""
        if key in self._learned_dwells:
            return False
        self._learned_dwells.add(key)
        return True

    def release_dwell(self, key: tuple[str, datetime]) -> None:
        """Forget a claim whose location could not be saved."""
        self._learned_dwells.discard(key)

    def find_nearby_location(
        self,
        vehicle_id: str,
        latitude: float,
        longitude: float,
        *,
        radius_m: float = 100.0,
    ) -> LearnedLocation | None:
        """Closest learned location within *radius_m* of a point."""
        best: LearnedLocation | None = None
        best_distance = radius_m
        for location in self.get_locations(vehicle_id):
            distance = haversine_m(latitude, longitude, location.centroid.latitude, location.centroid.longitude)
            if distance <= best_distance:
                best, best_distance = location, distance
        return best

    def get_learned_locations(self, vehicle_id: str, *, limit: int = 10) -> list[LearnedLocation]:
        """Learned locations ranked by visit count, then most recent visit."""
        ranked = sorted(
            self.get_locations(vehicle_id),
            key=lambda loc: (loc.visit_count, loc.last_visit),
            reverse=True,
        )
        return ranked[:limit]

    def get_location_context(
        self,
        vehicle_id: str,
        latitude: float,
        longitude: float,
        *,
        radius_m: float = 100.0,
        now: datetime | None = None,
    ) -> LocationContext:
        location = self.find_nearby_location(vehicle_id, latitude, longitude, radius_m=radius_m)
        if location is None:
            return LocationContext(at_known_location=False)
        now = now or self._clock()
        return LocationContext(
            at_known_location=True,
            location=location,
            distance_m=haversine_m(latitude, longitude, location.centroid.latitude, location.centroid.longitude),
            last_visit_days_ago=max((now - location.last_visit).total_seconds(), 0.0) / 86400.0,
        )

    def name_location(
        self,
        location_id: str,
        label: str,
        *,
        location_type: LocationType | None = None,
    ) -> LearnedLocation:
        """Attach a user label; labelled locations are no longer auto-classified.

        Raises
        ------
        KeyError
            If no location has *location_id*.
        """
        location = self._locations[location_id]
        update: dict[str, object] = {"custom_label": label, "auto_detected": False, "confidence": 1.0}
        if location_type is not None:
            update["location_type"] = location_type
        renamed = location.model_copy(update=update)
        self._locations[location_id] = renamed
        return renamed

    # ------------------------------------------------------------------
    # Daily health
    # ------------------------------------------------------------------

    def save_health(self, feature: DailyHealthFeature, score: DailyHealthScore) -> None:
        key = (feature.vehicle_id, feature.day)
        self._features[key] = feature
        self._scores[key] = score

    def get_health_feature(self, vehicle_id: str, day: date) -> DailyHealthFeature | None:
        return self._features.get((vehicle_id, day))

    def get_health_score(self, vehicle_id: str, day: date) -> DailyHealthScore | None:
        return self._scores.get((vehicle_id, day))

    def previous_health_score(self, vehicle_id: str, day: date) -> DailyHealthScore | None:
        """Most recent score strictly before *day*."""
        candidates = [s for (vid, d), s in self._scores.items() if vid == vehicle_id and d < day]
        return max(candidates, key=lambda s: s.day, default=None)

    def query_health(self, vehicle_id: str, start_day: date, end_day: date) -> list[DailyHealthScore]:
        """Scores for ``start_day <= day <= end_day``, newest first."""
        scores = [s for (vid, d), s in self._scores.items() if vid == vehicle_id and start_day <= d <= end_day]
        scores.sort(key=lambda s: s.day, reverse=True)
        return scores
