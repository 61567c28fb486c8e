"""fleetsense - Vehicle telemetry to events, trips, learned locations and daily health."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("fleetsense")
except PackageNotFoundError:
    __version__ = "0+local"
from fleetsense.config import PipelineConfig
from fleetsense.detection import EventDetector
from fleetsense.exceptions import (
    ComputationError,
    FleetSenseConfigError,
    FleetSenseError,
    InputError,
    StateGapError,
    StorageError,
)
from fleetsense.health import compute_daily_features, score_daily_health
from fleetsense.locations import LocationClusterer, find_dwell_candidates
from fleetsense.models import (
    DailyHealthFeature,
    DailyHealthScore,
    Event,
    EventSeverity,
    EventType,
    HealthTrend,
    LearnedLocation,
    LocationType,
    PositionSample,
    Trip,
    TripSource,
)
from fleetsense.pipeline import InsightPipeline
from fleetsense.state.positions import PositionTimeline
from fleetsense.state.store import InsightStore
from fleetsense.trips import IdleGapTripStrategy, IgnitionTripStrategy, TripSegmentationStrategy

__all__ = [
    "__version__",
    "ComputationError",
    "DailyHealthFeature",
    "DailyHealthScore",
    "Event",
    "EventDetector",
    "EventSeverity",
    "EventType",
    "FleetSenseConfigError",
    "FleetSenseError",
    "HealthTrend",
    "IdleGapTripStrategy",
    "IgnitionTripStrategy",
    "InputError",
    "InsightPipeline",
    "InsightStore",
    "LearnedLocation",
    "LocationClusterer",
    "LocationType",
    "PipelineConfig",
    "PositionSample",
    "PositionTimeline",
    "StateGapError",
    "StorageError",
    "Trip",
    "TripSegmentationStrategy",
    "TripSource",
    "compute_daily_features",
    "find_dwell_candidates",
    "score_daily_health",
]
