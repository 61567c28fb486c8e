"""Normalization helpers.

Centralizes defensive parsing and placeholder handling for raw
telemetry payloads.
"""

from __future__ import annotations

import math
from datetime import UTC, datetime
from typing import Any

_TRUE_STRINGS = frozenset({"1", "true", "yes", "y", "on", "acc_on"})
_FALSE_STRINGS = frozenset({"0", "false", "no", "n", "off", "acc_off"})

# Epoch values above this are milliseconds.
_MS_THRESHOLD = 1e11


def safe_float(value: Any) -> float | None:
    if value is None or value == "" or value == "--":
        return None
    if isinstance(value, bool):
        return float(value)
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(result) or math.isinf(result):
        return None
    return result


def safe_bool(value: Any) -> bool | None:
    """Interpret the many ways trackers encode a flag.

    Accepts real booleans, ``0``/``1`` numbers and common on/off strings.
    Anything else returns ``None`` so the field default applies.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        if isinstance(value, float) and math.isnan(value):
            return None
        return value != 0
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in _TRUE_STRINGS:
            return True
        if normalized in _FALSE_STRINGS:
            return False
    return None


def normalize_timestamp_seconds(value: Any) -> float | None:
    """Normalize epoch timestamps to seconds.

    - Empty/missing -> None
    - <= 0 -> None
    - Milliseconds (> 1e11) -> seconds
    """

    if value is None or value == "":
        return None
    try:
        ts = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(ts) or ts <= 0:
        return None
    if ts > _MS_THRESHOLD:
        ts /= 1000.0
    return ts


def _from_epoch(seconds: float, original: Any) -> Any:
    try:
        return datetime.fromtimestamp(seconds, tz=UTC)
    except (OverflowError, OSError, ValueError):
        return original


def parse_timestamp(value: Any) -> Any:
    """Coerce epoch seconds/milliseconds or ISO-8601 text to an aware UTC datetime.

    Values that cannot be interpreted are returned unchanged so the model
    validator reports them.
    """
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    if isinstance(value, str):
        text = value.strip()
        seconds = normalize_timestamp_seconds(text) if text.replace(".", "", 1).isdigit() else None
        if seconds is not None:
            return _from_epoch(seconds, value)
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return value
        return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = normalize_timestamp_seconds(value)
        if seconds is None:
            return value
        return _from_epoch(seconds, value)
    return value
