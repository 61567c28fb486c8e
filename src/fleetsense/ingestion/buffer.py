"""Reorder buffer for out-of-order sample delivery.

Trackers and brokers deliver samples late and in bursts. The buffer holds
each vehicle's samples for a short window and releases them in timestamp
order once the vehicle's high-water mark has moved past them.
"""

from __future__ import annotations

import heapq
import itertools
import logging
from datetime import datetime, timedelta

from fleetsense.models.position import PositionSample

_logger = logging.getLogger(__name__)


class ReorderBuffer:
    """Per-vehicle watermark buffer.

    A sample is released when ``high_water - sample.timestamp >= window``,
    where ``high_water`` is the newest timestamp seen for that vehicle.
    Duplicates of a pending sample are dropped.
    """

    def __init__(self, window: timedelta) -> None:
        if window < timedelta(0):
            raise ValueError("window must not be negative")
        self._window = window
        self._pending: dict[str, list[tuple[datetime, int, PositionSample]]] = {}
        self._pending_keys: dict[str, set[datetime]] = {}
        self._high_water: dict[str, datetime] = {}
        self._counter = itertools.count()

    @property
    def pending_count(self) -> int:
        return sum(len(heap) for heap in self._pending.values())

    def push(self, sample: PositionSample) -> list[PositionSample]:
        """Add a sample and return whatever is now safe to process, oldest first."""
        vehicle_id = sample.vehicle_id
        keys = self._pending_keys.setdefault(vehicle_id, set())
        if sample.timestamp in keys:
            _logger.debug("Duplicate pending sample vehicle=%s ts=%s", vehicle_id, sample.timestamp)
            return []

        heap = self._pending.setdefault(vehicle_id, [])
        heapq.heappush(heap, (sample.timestamp, next(self._counter), sample))
        keys.add(sample.timestamp)

        high_water = self._high_water.get(vehicle_id)
        if high_water is None or sample.timestamp > high_water:
            self._high_water[vehicle_id] = sample.timestamp

        return self._release(vehicle_id, self._high_water[vehicle_id] - self._window)

    def flush(self, vehicle_id: str | None = None) -> list[PositionSample]:
        """Release every pending sample (for one vehicle, or all of them)."""
        vehicle_ids = [vehicle_id] if vehicle_id is not None else sorted(self._pending)
        released: list[PositionSample] = []
        for vid in vehicle_ids:
            released.extend(self._release(vid, None))
        return released

    def _release(self, vehicle_id: str, cutoff: datetime | None) -> list[PositionSample]:
        heap = self._pending.get(vehicle_id)
        if not heap:
            return []
        keys = self._pending_keys[vehicle_id]
        released: list[PositionSample] = []
        while heap and (cutoff is None or heap[0][0] <= cutoff):
            _, _, sample = heapq.heappop(heap)
            keys.discard(sample.timestamp)
            released.append(sample)
        return released
