"""Dwell episode extraction.

A dwell is a place the vehicle stayed long enough to be worth learning:

* parking: from an ignition on->off transition to the next off->on
* idle: ignition on with speed below ``dwell_idle_speed_kmh`` until the
  vehicle moves again

An idle run already under way at the first sample is skipped: its real
start is unknown, and keying it by the first sample would learn the
same visit again once the full history is replayed.

Only closed episodes of at least ``min_dwell_minutes`` are returned.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import timedelta

from fleetsense.config import PipelineConfig
from fleetsense.models.location import DwellCandidate, DwellKind
from fleetsense.models.position import PositionSample
from fleetsense.trips.strategies import ordered_samples


def _candidate(start: PositionSample, end: PositionSample, kind: DwellKind) -> DwellCandidate:
    return DwellCandidate(
        vehicle_id=start.vehicle_id,
        latitude=start.latitude,
        longitude=start.longitude,
        start=start.timestamp,
        end=end.timestamp,
        kind=kind,
    )


def find_dwell_candidates(samples: Iterable[PositionSample], config: PipelineConfig) -> list[DwellCandidate]:
    """Closed parking and idle episodes, ordered by start time per vehicle."""
    min_duration = timedelta(minutes=config.min_dwell_minutes)
    idle_speed = config.dwell_idle_speed_kmh
    candidates: list[DwellCandidate] = []

    for ordered in ordered_samples(samples).values():
        parked_at: PositionSample | None = None
        idle_since: PositionSample | None = None
        leading_idle = False
        previous: PositionSample | None = None

        for sample in ordered:
            if previous is not None and previous.ignition_on and not sample.ignition_on:
                parked_at = sample
            elif sample.ignition_on and parked_at is not None:
                if sample.timestamp - parked_at.timestamp >= min_duration:
                    candidates.append(_candidate(parked_at, sample, DwellKind.PARKING))
                parked_at = None

            if sample.ignition_on and sample.speed < idle_speed:
                if previous is None:
                    leading_idle = True
                elif idle_since is None and not leading_idle:
                    idle_since = sample
            else:
                leading_idle = False
                if idle_since is not None:
                    # An idle run that ends in ignition-off belongs to the parking episode.
                    if sample.ignition_on and sample.timestamp - idle_since.timestamp >= min_duration:
                        candidates.append(_candidate(idle_since, sample, DwellKind.IDLE))
                    idle_since = None

            previous = sample

    candidates.sort(key=lambda c: (c.vehicle_id, c.start))
    return candidates
