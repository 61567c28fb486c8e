"""Daily health feature and score models."""

from __future__ import annotations

from datetime import date
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from fleetsense._constants import HEALTH_MODEL_VERSION


class HealthTrend(StrEnum):
    IMPROVING = "improving"
    STABLE = "stable"
    DECLINING = "declining"
    CRITICAL = "critical"


class SweepStatus(StrEnum):
    SUCCESS = "success"
    FAILED = "failed"


class DailyHealthFeature(BaseModel):
    """Pure aggregation of one vehicle-day of samples, trips and events."""

    model_config = ConfigDict(frozen=True)

    vehicle_id: str
    day: date
    points_count: int = 0
    transition_count: int = 0
    avg_sampling_interval_seconds: float | None = None
    max_gap_minutes: float = 0.0
    impossible_jump_count: int = 0
    gps_drift_ratio: float = 0.0
    speeding_exposure_pct: float = 0.0
    trip_count: int = 0
    distance_km: float = 0.0
    moving_minutes: float = 0.0
    idle_minutes: float = 0.0
    idle_event_count: int = 0
    overspeed_event_count: int = 0
    harsh_event_count: int = 0
    offline_event_count: int = 0
    avg_battery: float | None = None
    min_battery: float | None = None
    expected_points: int
    data_completeness_pct: float = 0.0
    low_sample_day: bool = True


class ComponentScores(BaseModel):
    model_config = ConfigDict(frozen=True)

    connectivity: float = Field(ge=0.0, le=100.0)
    safety: float = Field(ge=0.0, le=100.0)
    utilization: float = Field(ge=0.0, le=100.0)
    data_quality: float = Field(ge=0.0, le=100.0)


class DailyHealthScore(BaseModel):
    """Deterministic score for one vehicle-day."""

    model_config = ConfigDict(frozen=True)

    vehicle_id: str
    day: date
    health_score: int = Field(ge=0, le=100)
    confidence_score: int = Field(ge=0, le=100)
    trend: HealthTrend
    previous_score: int | None = None
    component_scores: ComponentScores
    feature_snapshot: DailyHealthFeature
    model_version: str = HEALTH_MODEL_VERSION


class HealthSweepResult(BaseModel):
    """Outcome of computing one vehicle-day in a batch sweep."""

    model_config = ConfigDict(frozen=True)

    vehicle_id: str
    day: date
    status: SweepStatus
    health_score: int | None = None
    confidence_score: int | None = None
    error: str | None = None
