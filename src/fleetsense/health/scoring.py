"""Daily health scoring."""

from __future__ import annotations

import math

from fleetsense.models.health import ComponentScores, DailyHealthFeature, DailyHealthScore, HealthTrend

COMPONENT_WEIGHTS = {
    "connectivity": 0.35,
    "safety": 0.30,
    "utilization": 0.20,
    "data_quality": 0.15,
}

TREND_BAND = 8
CRITICAL_SCORE = 40


def _round(value: float) -> int:
    """Round half away from zero."""
    return int(math.floor(abs(value) + 0.5)) * (1 if value >= 0 else -1)


def _bounded(value: float) -> int:
    return max(0, min(100, _round(value)))


def component_scores(feature: DailyHealthFeature) -> ComponentScores:
    """Four 0-100 sub-scores, each 100 minus a capped penalty."""
    connectivity = 100 - min(70.0, feature.offline_event_count * 8 + max(feature.max_gap_minutes - 30, 0) * 0.25)
    safety = 100 - min(
        75.0,
        feature.harsh_event_count * 4 + feature.overspeed_event_count * 3 + feature.speeding_exposure_pct * 0.5,
    )
    utilization = 100 - min(
        65.0,
        feature.idle_minutes * 0.15 + feature.idle_event_count * 2 + max(feature.distance_km - 400, 0) * 0.05,
    )
    data_quality = 100 - min(
        85.0,
        feature.impossible_jump_count * 12
        + feature.gps_drift_ratio * 100 * 0.7
        + (20 if feature.low_sample_day else 0)
        + (100 - feature.data_completeness_pct) * 0.5,
    )
    return ComponentScores(
        connectivity=_bounded(connectivity),
        safety=_bounded(safety),
        utilization=_bounded(utilization),
        data_quality=_bounded(data_quality),
    )


def confidence_score(feature: DailyHealthFeature) -> int:
    """How far the day's health score can be trusted, 0-100."""
    anomaly_penalty = min(100.0, feature.impossible_jump_count * 15 + feature.gps_drift_ratio * 100 * 40)
    return _bounded(feature.data_completeness_pct * 0.7 + (100 - anomaly_penalty) * 0.3)


def trend_label(score: int, previous_score: int | None) -> HealthTrend:
    if score < CRITICAL_SCORE:
        return HealthTrend.CRITICAL
    if previous_score is None:
        return HealthTrend.STABLE
    delta = score - previous_score
    if delta >= TREND_BAND:
        return HealthTrend.IMPROVING
    if delta <= -TREND_BAND:
        return HealthTrend.DECLINING
    return HealthTrend.STABLE


def score_daily_health(feature: DailyHealthFeature, previous: DailyHealthScore | None = None) -> DailyHealthScore:
    """Score a vehicle-day from its features and the most recent earlier score.

    Severe single-day anomalies subtract flat penalties, and a low
    confidence caps the score (75 below 35 confidence, 85 below 50).
    """
    components = component_scores(feature)
    raw = (
        components.connectivity * COMPONENT_WEIGHTS["connectivity"]
        + components.safety * COMPONENT_WEIGHTS["safety"]
        + components.utilization * COMPONENT_WEIGHTS["utilization"]
        + components.data_quality * COMPONENT_WEIGHTS["data_quality"]
    )
    if feature.max_gap_minutes >= 240:
        raw -= 10
    if feature.impossible_jump_count >= 3:
        raw -= 15
    if feature.speeding_exposure_pct >= 20:
        raw -= 10
    health = _bounded(raw)

    confidence = confidence_score(feature)
    if confidence < 35:
        health = min(health, 75)
    elif confidence < 50:
        health = min(health, 85)

    previous_score = previous.health_score if previous is not None else None
    return DailyHealthScore(
        vehicle_id=feature.vehicle_id,
        day=feature.day,
        health_score=health,
        confidence_score=confidence,
        trend=trend_label(health, previous_score),
        previous_score=previous_score,
        component_scores=components,
        feature_snapshot=feature,
    )
