"""Vehicle event models."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class EventType(StrEnum):
    LOW_BATTERY = "low_battery"
    CRITICAL_BATTERY = "critical_battery"
    OVERSPEEDING = "overspeeding"
    HARSH_BRAKING = "harsh_braking"
    RAPID_ACCELERATION = "rapid_acceleration"
    IGNITION_ON = "ignition_on"
    IGNITION_OFF = "ignition_off"
    TRIP_COMPLETED = "trip_completed"
    VEHICLE_MOVING = "vehicle_moving"
    IDLE_TOO_LONG = "idle_too_long"
    OFFLINE = "offline"
    ONLINE = "online"


class EventSeverity(StrEnum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


def _new_event_id() -> str:
    return uuid.uuid4().hex


class Event(BaseModel):
    """A discrete, typed occurrence derived from consecutive samples.

    ``created_at`` is the timestamp of the sample that produced the event,
    not the wall-clock time detection ran.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_event_id)
    vehicle_id: str
    event_type: EventType
    severity: EventSeverity
    title: str
    description: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)
    latitude: float | None = None
    longitude: float | None = None
    value_before: float | None = None
    value_after: float | None = None
    threshold: float | None = None
    created_at: datetime
    expires_at: datetime
    acknowledged: bool = False
    acknowledged_at: datetime | None = None

    @field_validator("created_at", "expires_at", "acknowledged_at")
    @classmethod
    def _ensure_tz_aware(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    @property
    def debounce_key(self) -> tuple[str, EventType]:
        return self.vehicle_id, self.event_type


class EventStatistics(BaseModel):
    """Aggregate counts for one ``(event_type, severity)`` pair."""

    model_config = ConfigDict(frozen=True)

    event_type: EventType
    severity: EventSeverity
    count: int
    acknowledged_count: int
    last_occurrence: datetime
