"""Shared constants for fleetsense."""

from __future__ import annotations

EARTH_RADIUS_KM = 6371.0

#: Version tag stored with every daily health score.
HEALTH_MODEL_VERSION = "daily-gps-health-v1"

#: Expected samples per day when the sampling interval is unknown (one every 5 minutes).
DEFAULT_EXPECTED_POINTS = 288
MIN_EXPECTED_POINTS = 24
MAX_EXPECTED_POINTS = 1440
LOW_SAMPLE_DAY_POINTS = 24

#: Hours that count as "overnight" for location classification: [22:00, 06:00).
OVERNIGHT_START_HOUR = 22
OVERNIGHT_END_HOUR = 6

# Environment variable prefix used by PipelineConfig.from_env.
ENV_PREFIX = "FLEETSENSE_"
