from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, date, datetime, timedelta

import pytest

from fleetsense.config import PipelineConfig
from fleetsense.models.event import Event, EventSeverity, EventType
from fleetsense.models.health import ComponentScores, DailyHealthFeature, DailyHealthScore, HealthTrend
from fleetsense.models.location import LearnedLocation, LocationType
from fleetsense.models.trip import DistanceMethod, GeoPoint, Trip, TripSource, trip_id
from fleetsense.state.policy import cooldown_for, expiry_for, should_purge, within_cooldown
from fleetsense.state.store import InsightStore

_COOLDOWN = timedelta(minutes=5)


def _dt() -> datetime:
    return datetime(2026, 3, 2, 12, 0, tzinfo=UTC)


def _event(
    minutes: float = 0,
    *,
    event_type: EventType = EventType.LOW_BATTERY,
    severity: EventSeverity = EventSeverity.WARNING,
    vehicle_id: str = "VEH-1",
) -> Event:
    created = _dt() + timedelta(minutes=minutes)
    return Event(
        vehicle_id=vehicle_id,
        event_type=event_type,
        severity=severity,
        title=event_type.value,
        created_at=created,
        expires_at=created + expiry_for(event_type),
    )


def _store() -> InsightStore:
    return InsightStore(clock=_dt)


# ------------------------------------------------------------------
# Policy
# ------------------------------------------------------------------


def test_cooldown_per_type() -> None:
    config = PipelineConfig()
    assert cooldown_for(EventType.VEHICLE_MOVING, config) == timedelta(minutes=10)
    assert cooldown_for(EventType.OVERSPEEDING, config) == timedelta(minutes=5)


def test_within_cooldown_is_symmetric() -> None:
    assert within_cooldown(None, _dt(), _COOLDOWN) is False
    assert within_cooldown(_dt(), _dt() + timedelta(minutes=4), _COOLDOWN) is True
    assert within_cooldown(_dt(), _dt() - timedelta(minutes=4), _COOLDOWN) is True
    assert within_cooldown(_dt(), _dt() + timedelta(minutes=5), _COOLDOWN) is False


def test_expiry_defaults() -> None:
    assert expiry_for(EventType.TRIP_COMPLETED) == timedelta(hours=4)
    assert expiry_for(EventType.OVERSPEEDING) == timedelta(hours=24)


def test_should_purge_rules() -> None:
    now = _dt() + timedelta(days=8)
    info = _event(event_type=EventType.IGNITION_ON, severity=EventSeverity.INFO)
    warning = _event()
    assert should_purge(info, now) is True
    assert should_purge(warning, now) is False
    assert should_purge(warning.model_copy(update={"acknowledged": True}), now) is True
    assert should_purge(warning, _dt() + timedelta(days=31)) is True


# ------------------------------------------------------------------
# Events
# ------------------------------------------------------------------


class TestEvents:
    def test_cooldown_suppresses_duplicates(self) -> None:
        store = _store()
        assert store.insert_event(_event(0), cooldown=_COOLDOWN) is True
        assert store.insert_event(_event(3), cooldown=_COOLDOWN) is False
        assert store.insert_event(_event(6), cooldown=_COOLDOWN) is True
        assert len(store.query_events("VEH-1")) == 2

    def test_replayed_older_event_is_suppressed(self) -> None:
        store = _store()
        store.insert_event(_event(10), cooldown=_COOLDOWN)
        assert store.insert_event(_event(7), cooldown=_COOLDOWN) is False

    def test_no_two_events_of_a_type_inside_cooldown(self) -> None:
        store = _store()
        for minute in [0, 1, 2, 4, 5, 9, 10, 11, 16, 3, 8]:
            store.insert_event(_event(minute), cooldown=_COOLDOWN)
        times = sorted(e.created_at for e in store.query_events("VEH-1"))
        for earlier, later in zip(times, times[1:], strict=False):
            assert later - earlier >= _COOLDOWN

    def test_cooldown_is_per_type_and_vehicle(self) -> None:
        store = _store()
        assert store.insert_event(_event(0), cooldown=_COOLDOWN)
        assert store.insert_event(_event(1, event_type=EventType.OVERSPEEDING), cooldown=_COOLDOWN)
        assert store.insert_event(_event(1, vehicle_id="VEH-2"), cooldown=_COOLDOWN)

    def test_concurrent_inserts_store_one_event(self) -> None:
        store = _store()
        events = [_event(i / 10) for i in range(32)]
        barrier = threading.Barrier(8, timeout=5)

        def _insert(event: Event) -> bool:
            barrier.wait()
            return store.insert_event(event, cooldown=_COOLDOWN)

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(_insert, events))

        assert results.count(True) == 1
        assert len(store.query_events("VEH-1")) == 1

    def test_query_filters_and_order(self) -> None:
        store = _store()
        store.insert_event(_event(0), cooldown=_COOLDOWN)
        overspeed = _event(10, event_type=EventType.OVERSPEEDING, severity=EventSeverity.ERROR)
        store.insert_event(overspeed, cooldown=_COOLDOWN)
        store.insert_event(_event(20), cooldown=_COOLDOWN)

        events = store.query_events("VEH-1")
        assert [e.created_at for e in events] == [_dt() + timedelta(minutes=m) for m in (20, 10, 0)]
        assert len(store.query_events("VEH-1", event_type=EventType.LOW_BATTERY)) == 2
        assert len(store.query_events("VEH-1", severity=EventSeverity.ERROR)) == 1
        assert len(store.query_events("VEH-1", start=_dt() + timedelta(minutes=10))) == 2
        assert len(store.query_events("VEH-1", end=_dt() + timedelta(minutes=10))) == 1
        assert len(store.query_events("VEH-1", limit=1)) == 1
        assert store.query_events("VEH-2") == []

    def test_acknowledge_is_idempotent(self) -> None:
        store = _store()
        event = _event()
        store.insert_event(event, cooldown=_COOLDOWN)

        assert store.acknowledge_event(event.id) is True
        first = store.get_event(event.id)
        assert first is not None and first.acknowledged and first.acknowledged_at == _dt()

        assert store.acknowledge_event(event.id, now=_dt() + timedelta(hours=1)) is True
        assert store.get_event(event.id) == first
        assert store.acknowledge_event("missing") is False

    def test_unacknowledged_excludes_expired(self) -> None:
        store = _store()
        fresh = _event(0)
        stale = _event(-300, event_type=EventType.IGNITION_ON, severity=EventSeverity.INFO)
        acked = _event(0, event_type=EventType.OVERSPEEDING)
        for event in (fresh, stale, acked):
            store.insert_event(event, cooldown=_COOLDOWN)
        store.acknowledge_event(acked.id)

        pending = store.get_unacknowledged_events("VEH-1")
        assert [e.id for e in pending] == [fresh.id]

    def test_event_statistics(self) -> None:
        store = _store()
        for minute in (0, 10, 20):
            store.insert_event(_event(-minute), cooldown=_COOLDOWN)
        overspeed = _event(-5, event_type=EventType.OVERSPEEDING, severity=EventSeverity.ERROR)
        store.insert_event(overspeed, cooldown=_COOLDOWN)
        store.insert_event(_event(-60 * 24 * 10, event_type=EventType.OFFLINE), cooldown=_COOLDOWN)
        store.acknowledge_event(overspeed.id)

        stats = store.event_statistics("VEH-1", days=7)
        assert [(s.event_type, s.count, s.acknowledged_count) for s in stats] == [
            (EventType.LOW_BATTERY, 3, 0),
            (EventType.OVERSPEEDING, 1, 1),
        ]
        assert stats[0].last_occurrence == _dt()

    def test_purge_applies_retention(self) -> None:
        store = _store()
        old_info = _event(-60 * 24 * 8, event_type=EventType.IGNITION_ON, severity=EventSeverity.INFO)
        old_warning = _event(-60 * 24 * 8)
        ancient = _event(-60 * 24 * 31, event_type=EventType.OVERSPEEDING)
        for event in (old_info, old_warning, ancient):
            store.insert_event(event, cooldown=_COOLDOWN)

        assert store.purge_events() == 2
        assert [e.id for e in store.query_events("VEH-1")] == [old_warning.id]
        # Purged ids no longer block the cooldown.
        assert store.insert_event(_event(-60 * 24 * 31, event_type=EventType.OVERSPEEDING), cooldown=_COOLDOWN)


# ------------------------------------------------------------------
# Trips
# ------------------------------------------------------------------


def _trip(start_minutes: int, *, distance: float = 5.0, source: TripSource = TripSource.IGNITION) -> Trip:
    start = _dt() + timedelta(minutes=start_minutes)
    end = start + timedelta(minutes=15)
    return Trip(
        id=trip_id("VEH-1", source, start),
        vehicle_id="VEH-1",
        start_time=start,
        end_time=end,
        start_point=GeoPoint(latitude=52.0, longitude=4.0),
        end_point=GeoPoint(latitude=52.1, longitude=4.1),
        distance_km=distance,
        max_speed_kmh=80.0,
        avg_speed_kmh=40.0,
        duration_seconds=900.0,
        source_method=source,
        distance_method=DistanceMethod.HAVERSINE,
        point_count=4,
    )


class TestTrips:
    def test_replace_drops_stale_boundaries(self) -> None:
        store = _store()
        store.replace_trips("VEH-1", TripSource.IGNITION, [_trip(0), _trip(30)])
        store.replace_trips("VEH-1", TripSource.IDLE_GAP, [_trip(0, source=TripSource.IDLE_GAP)])
        store.replace_trips("VEH-1", TripSource.IGNITION, [_trip(10)])

        ignition = store.query_trips("VEH-1", source=TripSource.IGNITION)
        assert [t.start_time for t in ignition] == [_dt() + timedelta(minutes=10)]
        assert len(store.query_trips("VEH-1")) == 2

    def test_replace_is_scoped_to_window(self) -> None:
        store = _store()
        store.replace_trips("VEH-1", TripSource.IGNITION, [_trip(0), _trip(60 * 24)])
        store.replace_trips(
            "VEH-1",
            TripSource.IGNITION,
            [],
            start=_dt(),
            end=_dt() + timedelta(hours=1),
        )
        assert [t.start_time for t in store.query_trips("VEH-1")] == [_dt() + timedelta(days=1)]

    def test_daily_mileage(self) -> None:
        store = _store()
        store.replace_trips(
            "VEH-1",
            TripSource.IGNITION,
            [_trip(0, distance=5.0), _trip(60, distance=7.5), _trip(60 * 24, distance=3.0)],
        )
        mileage = store.daily_mileage("VEH-1", end_day=date(2026, 3, 3), days=7)
        assert [(m.day, m.distance_km, m.trip_count) for m in mileage] == [
            (date(2026, 3, 3), 3.0, 1),
            (date(2026, 3, 2), 12.5, 2),
        ]
        assert mileage[1].duration_minutes == 30.0


# ------------------------------------------------------------------
# Learned locations
# ------------------------------------------------------------------


def _location(lat: float, lon: float, *, visits: int, last_day: int = 1) -> LearnedLocation:
    return LearnedLocation(
        vehicle_id="VEH-1",
        centroid=GeoPoint(latitude=lat, longitude=lon),
        radius_m=50.0,
        visit_count=visits,
        total_duration_minutes=visits * 30.0,
        first_visit=_dt() - timedelta(days=20),
        last_visit=_dt() - timedelta(days=last_day),
    )


class TestLocations:
    def test_nearby_and_context(self) -> None:
        store = _store()
        home = _location(52.37, 4.89, visits=12, last_day=2)
        store.save_location(home)

        assert store.find_nearby_location("VEH-1", 52.3705, 4.89) == home
        assert store.find_nearby_location("VEH-1", 52.40, 4.89) is None
        assert store.find_nearby_location("VEH-2", 52.37, 4.89) is None

        context = store.get_location_context("VEH-1", 52.3705, 4.89)
        assert context.at_known_location is True
        assert context.location == home
        assert context.distance_m == pytest.approx(55.6, abs=0.5)
        assert context.last_visit_days_ago == pytest.approx(2.0)

        assert store.get_location_context("VEH-1", 53.0, 5.0).at_known_location is False

    def test_ranking(self) -> None:
        store = _store()
        a = _location(52.0, 4.0, visits=3)
        b = _location(52.1, 4.1, visits=8, last_day=5)
        c = _location(52.2, 4.2, visits=8, last_day=1)
        for location in (a, b, c):
            store.save_location(location)
        assert [loc.id for loc in store.get_learned_locations("VEH-1")] == [c.id, b.id, a.id]
        assert len(store.get_learned_locations("VEH-1", limit=2)) == 2

    def test_name_location(self) -> None:
        store = _store()
        location = _location(52.0, 4.0, visits=3)
        store.save_location(location)

        renamed = store.name_location(location.id, "Depot", location_type=LocationType.WORK)
        assert renamed.display_name == "Depot"
        assert renamed.auto_detected is False
        assert renamed.confidence == 1.0
        assert renamed.location_type == LocationType.WORK
        assert store.get_location(location.id) == renamed

        with pytest.raises(KeyError):
            store.name_location("missing", "Nowhere")

    def test_claim_dwell_once(self) -> None:
        store = _store()
        assert store.claim_dwell(("VEH-1", _dt())) is True
        assert store.claim_dwell(("VEH-1", _dt())) is False

    def test_released_dwell_can_be_claimed_again(self) -> None:
        store = _store()
        store.claim_dwell(("VEH-1", _dt()))
        store.release_dwell(("VEH-1", _dt()))
        assert store.claim_dwell(("VEH-1", _dt())) is True


# ------------------------------------------------------------------
# Daily health
# ------------------------------------------------------------------


def _score(day: date, value: int) -> tuple[DailyHealthFeature, DailyHealthScore]:
    feature = DailyHealthFeature(vehicle_id="VEH-1", day=day, expected_points=288)
    score = DailyHealthScore(
        vehicle_id="VEH-1",
        day=day,
        health_score=value,
        confidence_score=50,
        trend=HealthTrend.STABLE,
        component_scores=ComponentScores(connectivity=100, safety=100, utilization=100, data_quality=100),
        feature_snapshot=feature,
    )
    return feature, score


def test_health_history() -> None:
    store = _store()
    for offset, value in [(0, 80), (1, 70), (3, 90)]:
        store.save_health(*_score(date(2026, 3, 1) + timedelta(days=offset), value))

    previous = store.previous_health_score("VEH-1", date(2026, 3, 4))
    assert previous is not None and previous.day == date(2026, 3, 2)
    assert store.previous_health_score("VEH-1", date(2026, 3, 1)) is None

    history = store.query_health("VEH-1", date(2026, 3, 1), date(2026, 3, 3))
    assert [s.health_score for s in history] == [70, 80]
    assert store.get_health_feature("VEH-1", date(2026, 3, 4)) is not None
