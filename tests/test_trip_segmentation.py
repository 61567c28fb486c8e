from __future__ import annotations

import random
from datetime import UTC, datetime, timedelta

import pytest

from fleetsense.config import PipelineConfig
from fleetsense.exceptions import ComputationError
from fleetsense.models.position import PositionSample
from fleetsense.models.trip import DistanceMethod, TripSource
from fleetsense.trips import IdleGapTripStrategy, IgnitionTripStrategy, build_trip, default_strategies

_T0 = datetime(2026, 3, 2, 8, 0, tzinfo=UTC)


def _sample(
    minute: float,
    *,
    lat: float = 52.37,
    speed: float = 0.0,
    ignition: bool = True,
    odometer: float | None = None,
    vehicle_id: str = "VEH-1",
) -> PositionSample:
    return PositionSample(
        vehicle_id=vehicle_id,
        timestamp=_T0 + timedelta(minutes=minute),
        latitude=lat,
        longitude=4.89,
        speed=speed,
        ignition_on=ignition,
        odometer_total=odometer,
    )


def _drive() -> list[PositionSample]:
    return [
        _sample(0, ignition=False),
        _sample(1, ignition=True),
        _sample(2, lat=52.375, speed=60),
        _sample(3, lat=52.38, ignition=False),
    ]


def _stop_and_go() -> list[PositionSample]:
    return [
        _sample(0, lat=52.370, speed=30),
        _sample(1, lat=52.375, speed=40),
        _sample(2, lat=52.380, speed=0),
        _sample(3, lat=52.380, speed=0),
        _sample(4, lat=52.380, speed=0),
        _sample(5, lat=52.380, speed=0),
        _sample(6, lat=52.385, speed=20),
        _sample(7, lat=52.390, speed=30),
        _sample(8, lat=52.395, ignition=False),
    ]


@pytest.fixture
def config() -> PipelineConfig:
    return PipelineConfig()


# ------------------------------------------------------------------
# Ignition strategy
# ------------------------------------------------------------------


class TestIgnitionStrategy:
    def test_drive_scenario_produces_one_trip(self, config: PipelineConfig) -> None:
        trips = IgnitionTripStrategy(config).segment(_drive())

        assert len(trips) == 1
        trip = trips[0]
        assert trip.start_time == _T0 + timedelta(minutes=1)
        assert trip.end_time == _T0 + timedelta(minutes=3)
        assert trip.point_count == 3
        assert trip.source_method == TripSource.IGNITION
        assert trip.distance_method == DistanceMethod.HAVERSINE
        assert trip.distance_km == pytest.approx(1.112, abs=0.001)
        assert trip.max_speed_kmh == 60.0
        assert trip.avg_speed_kmh == 20.0
        assert trip.duration_seconds == 120.0

    def test_reporting_gap_splits_trip(self, config: PipelineConfig) -> None:
        samples = [
            _sample(0, lat=52.370, speed=30),
            _sample(1, lat=52.375, speed=30),
            _sample(10, lat=52.380, speed=30),
            _sample(11, lat=52.385, speed=30),
            _sample(12, lat=52.390, ignition=False),
        ]
        trips = IgnitionTripStrategy(config).segment(samples)
        assert [(t.start_time, t.end_time) for t in trips] == [
            (_T0, _T0 + timedelta(minutes=1)),
            (_T0 + timedelta(minutes=10), _T0 + timedelta(minutes=12)),
        ]

    def test_standstill_does_not_split(self, config: PipelineConfig) -> None:
        trips = IgnitionTripStrategy(config).segment(_stop_and_go())
        assert len(trips) == 1
        assert trips[0].start_time == _T0
        assert trips[0].end_time == _T0 + timedelta(minutes=8)

    def test_open_trip_is_not_emitted(self, config: PipelineConfig) -> None:
        samples = [_sample(0, speed=40), _sample(1, lat=52.38, speed=40)]
        assert IgnitionTripStrategy(config).segment(samples) == []


# ------------------------------------------------------------------
# Idle-gap strategy
# ------------------------------------------------------------------


class TestIdleGapStrategy:
    def test_long_standstill_splits_trip(self, config: PipelineConfig) -> None:
        trips = IdleGapTripStrategy(config).segment(_stop_and_go())

        assert [(t.start_time, t.end_time) for t in trips] == [
            (_T0, _T0 + timedelta(minutes=2)),
            (_T0 + timedelta(minutes=6), _T0 + timedelta(minutes=7)),
        ]
        assert all(t.source_method == TripSource.IDLE_GAP for t in trips)

    def test_short_standstill_keeps_trip(self, config: PipelineConfig) -> None:
        samples = [
            _sample(0, lat=52.370, speed=30),
            _sample(1, lat=52.375, speed=0),
            _sample(2, lat=52.375, speed=0),
            _sample(3, lat=52.380, speed=30),
            _sample(4, lat=52.385, ignition=False),
        ]
        trips = IdleGapTripStrategy(config).segment(samples)
        assert len(trips) == 1
        assert trips[0].end_time == _T0 + timedelta(minutes=3)

    def test_single_moving_sample_is_discarded(self, config: PipelineConfig) -> None:
        assert IdleGapTripStrategy(config).segment(_drive()) == []


# ------------------------------------------------------------------
# Aggregation
# ------------------------------------------------------------------


class TestBuildTrip:
    def test_odometer_wins_when_positive(self) -> None:
        samples = [_sample(0, odometer=1000.0, speed=50), _sample(20, lat=52.38, odometer=1012.5, ignition=False)]
        trip = build_trip("VEH-1", TripSource.IGNITION, samples, min_distance_km=0.05)
        assert trip.distance_km == 12.5
        assert trip.distance_method == DistanceMethod.ODOMETER

    def test_flat_odometer_falls_back_to_haversine(self) -> None:
        samples = [_sample(0, odometer=1000.0), _sample(20, lat=52.38, odometer=1000.0)]
        trip = build_trip("VEH-1", TripSource.IGNITION, samples, min_distance_km=0.05)
        assert trip.distance_method == DistanceMethod.HAVERSINE
        assert trip.distance_km == pytest.approx(1.112, abs=0.001)

    def test_noise_floor_discards_stationary_run(self) -> None:
        samples = [_sample(0), _sample(5, lat=52.3701)]
        with pytest.raises(ComputationError):
            build_trip("VEH-1", TripSource.IGNITION, samples, min_distance_km=0.05)

    def test_zero_duration_rejected(self) -> None:
        with pytest.raises(ComputationError):
            build_trip("VEH-1", TripSource.IGNITION, [_sample(0), _sample(0, lat=52.5)], min_distance_km=0.05)

    def test_single_sample_rejected(self) -> None:
        with pytest.raises(ComputationError):
            build_trip("VEH-1", TripSource.IGNITION, [_sample(0)], min_distance_km=0.05)


# ------------------------------------------------------------------
# Properties shared by every strategy
# ------------------------------------------------------------------


def _all_samples() -> list[PositionSample]:
    later = [s.model_copy(update={"timestamp": s.timestamp + timedelta(hours=2)}) for s in _stop_and_go()]
    other = [s.model_copy(update={"vehicle_id": "VEH-2"}) for s in _drive()]
    return _drive() + later + other


@pytest.mark.parametrize("strategy_cls", [IgnitionTripStrategy, IdleGapTripStrategy])
def test_segmentation_is_order_independent_and_idempotent(
    strategy_cls: type[IgnitionTripStrategy] | type[IdleGapTripStrategy],
    config: PipelineConfig,
) -> None:
    strategy = strategy_cls(config)
    baseline = strategy.segment(_all_samples())

    shuffled = _all_samples() + _all_samples()[:5]
    random.Random(7).shuffle(shuffled)

    assert strategy.segment(shuffled) == baseline
    assert strategy.segment(_all_samples()) == baseline
    for trip in baseline:
        assert trip.end_time > trip.start_time
        assert trip.distance_km >= 0


def test_default_strategies_cover_both_sources(config: PipelineConfig) -> None:
    assert [s.source for s in default_strategies(config)] == [TripSource.IGNITION, TripSource.IDLE_GAP]
