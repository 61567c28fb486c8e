"""Append-only per-vehicle position timeline.

Samples are kept sorted by timestamp regardless of arrival order and
de-duplicated on ``(vehicle_id, timestamp)``.
"""

from __future__ import annotations

import bisect
from collections.abc import Iterable
from datetime import datetime

from fleetsense.models.position import PositionSample


def _sample_ts(sample: PositionSample) -> datetime:
    return sample.timestamp


class PositionTimeline:
    """In-memory ordered sample store."""

    def __init__(self, samples: Iterable[PositionSample] = ()) -> None:
        self._samples: dict[str, list[PositionSample]] = {}
        for sample in samples:
            self.add(sample)

    def _vehicle(self, vehicle_id: str) -> list[PositionSample]:
        samples = self._samples.get(vehicle_id)
        if samples is None:
            samples = []
            self._samples[vehicle_id] = samples
        return samples

    def add(self, sample: PositionSample) -> bool:
        """Insert a sample in timestamp order.

        Returns ``False`` when a sample with the same timestamp is already
        stored for the vehicle (duplicate delivery).
        """
        samples = self._vehicle(sample.vehicle_id)
        index = bisect.bisect_left(samples, sample.timestamp, key=_sample_ts)
        if index < len(samples) and samples[index].timestamp == sample.timestamp:
            return False
        samples.insert(index, sample)
        return True

    def vehicle_ids(self) -> list[str]:
        return sorted(vid for vid, samples in self._samples.items() if samples)

    def count(self, vehicle_id: str) -> int:
        return len(self._samples.get(vehicle_id, ()))

    def range(
        self,
        vehicle_id: str,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[PositionSample]:
        """Samples with ``start <= timestamp < end`` (open bounds when ``None``)."""
        samples = self._samples.get(vehicle_id)
        if not samples:
            return []
        lo = 0 if start is None else bisect.bisect_left(samples, start, key=_sample_ts)
        hi = len(samples) if end is None else bisect.bisect_left(samples, end, key=_sample_ts)
        return samples[lo:hi]

    def latest(self, vehicle_id: str) -> PositionSample | None:
        samples = self._samples.get(vehicle_id)
        return samples[-1] if samples else None

    def active_vehicles(self, start: datetime, end: datetime) -> list[str]:
        """Vehicles with at least one sample in ``[start, end)``."""
        return [vid for vid in self.vehicle_ids() if self.range(vid, start, end)]
