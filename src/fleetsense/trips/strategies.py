"""Trip segmentation strategies.

Two definitions of a trip coexist and both are kept:

* :class:`IgnitionTripStrategy` follows the ignition switch and only
  splits a drive on a reporting gap.
* :class:`IdleGapTripStrategy` looks at ignition-on samples only and also
  splits a drive wherever the vehicle stood still long enough.

Both are pure functions of the ordered, de-duplicated samples.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from datetime import datetime, timedelta
from typing import Protocol

from fleetsense.config import PipelineConfig
from fleetsense.exceptions import ComputationError
from fleetsense.models.position import PositionSample
from fleetsense.models.trip import Trip, TripSource
from fleetsense.trips.aggregate import build_trip

_logger = logging.getLogger(__name__)


class TripSegmentationStrategy(Protocol):
    """Turns one vehicle's samples into closed trips."""

    source: TripSource

    def segment(self, samples: Iterable[PositionSample]) -> list[Trip]: ...


def ordered_samples(samples: Iterable[PositionSample]) -> dict[str, list[PositionSample]]:
    """Group by vehicle, sort by timestamp and drop repeated timestamps."""
    grouped: dict[str, dict[datetime, PositionSample]] = {}
    for sample in samples:
        grouped.setdefault(sample.vehicle_id, {}).setdefault(sample.timestamp, sample)
    return {vid: [by_ts[ts] for ts in sorted(by_ts)] for vid, by_ts in sorted(grouped.items())}


class _BaseStrategy:
    source: TripSource

    def __init__(self, config: PipelineConfig) -> None:
        self._config = config
        self._gap = timedelta(minutes=config.trip_gap_minutes)

    def segment(self, samples: Iterable[PositionSample]) -> list[Trip]:
        trips: list[Trip] = []
        for vehicle_id, ordered in ordered_samples(samples).items():
            for run in self._runs(ordered):
                trip = self._finalize(vehicle_id, run)
                if trip is not None:
                    trips.append(trip)
        return trips

    def _runs(self, samples: Sequence[PositionSample]) -> Iterable[list[PositionSample]]:
        raise NotImplementedError

    def _finalize(self, vehicle_id: str, run: Sequence[PositionSample]) -> Trip | None:
        try:
            return build_trip(vehicle_id, self.source, run, min_distance_km=self._config.min_trip_distance_km)
        except ComputationError as exc:
            _logger.debug("Discarded %s trip for vehicle=%s: %s", self.source, vehicle_id, exc)
            return None


class IgnitionTripStrategy(_BaseStrategy):
    """Trips bounded by ignition transitions.

    A trip opens on the first ignition-on sample after an ignition-off
    sample (or at the start of the data) and closes on the ignition-off
    sample that ends it. A reporting gap longer than ``trip_gap_minutes``
    between ignition-on samples closes the trip at the last sample before
    the gap and opens a new one. A trip still open at the end of the data
    is not emitted.
    """

    source = TripSource.IGNITION

    def _runs(self, samples: Sequence[PositionSample]) -> Iterable[list[PositionSample]]:
        current: list[PositionSample] | None = None
        for sample in samples:
            if sample.ignition_on:
                if current is None:
                    current = [sample]
                elif sample.timestamp - current[-1].timestamp > self._gap:
                    yield current
                    current = [sample]
                else:
                    current.append(sample)
            elif current is not None:
                current.append(sample)
                yield current
                current = None


class IdleGapTripStrategy(_BaseStrategy):
    """Trips over ignition-on samples, split on standstill.

    A trip opens on the first moving sample. A run of zero-speed samples
    that lasts at least ``trip_gap_minutes`` closes the trip where the
    run began; the next moving sample opens a new trip. An ignition-off
    sample, or a reporting gap longer than ``trip_gap_minutes``, closes
    the trip at its last ignition-on sample.
    """

    source = TripSource.IDLE_GAP

    def _runs(self, samples: Sequence[PositionSample]) -> Iterable[list[PositionSample]]:
        current: list[PositionSample] | None = None
        idle_start: int | None = None

        for sample in samples:
            if not sample.ignition_on:
                if current is not None:
                    yield current[: idle_start + 1] if idle_start is not None else current
                current, idle_start = None, None
                continue

            if current is not None and sample.timestamp - current[-1].timestamp > self._gap:
                yield current[: idle_start + 1] if idle_start is not None else current
                current, idle_start = None, None

            if current is None:
                if sample.speed > 0:
                    current = [sample]
                continue

            current.append(sample)
            if sample.speed > 0:
                idle_start = None
                continue

            if idle_start is None:
                idle_start = len(current) - 1
            elif sample.timestamp - current[idle_start].timestamp >= self._gap:
                yield current[: idle_start + 1]
                current, idle_start = None, None


def default_strategies(config: PipelineConfig) -> tuple[TripSegmentationStrategy, ...]:
    return IgnitionTripStrategy(config), IdleGapTripStrategy(config)
