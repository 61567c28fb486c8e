"""Trip segmentation."""

from fleetsense.trips.aggregate import build_trip, measure_distance
from fleetsense.trips.strategies import (
    IdleGapTripStrategy,
    IgnitionTripStrategy,
    TripSegmentationStrategy,
    default_strategies,
    ordered_samples,
)

__all__ = [
    "IdleGapTripStrategy",
    "IgnitionTripStrategy",
    "TripSegmentationStrategy",
    "build_trip",
    "default_strategies",
    "measure_distance",
    "ordered_samples",
]
