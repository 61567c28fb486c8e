"""Daily per-vehicle health and confidence scoring."""

from fleetsense.health.features import compute_daily_features, day_window
from fleetsense.health.scoring import component_scores, confidence_score, score_daily_health, trend_label

__all__ = [
    "component_scores",
    "compute_daily_features",
    "confidence_score",
    "day_window",
    "score_daily_health",
    "trend_label",
]
