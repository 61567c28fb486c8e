"""Deterministic event lifecycle policy.

This module contains *no* detection logic. It decides how long events
live, how close together two events of the same type may be, and when an
event may be purged.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from fleetsense.config import PipelineConfig
from fleetsense.models.event import Event, EventSeverity, EventType

DEFAULT_EXPIRY = timedelta(hours=24)

_EXPIRY: dict[EventType, timedelta] = {
    EventType.IGNITION_ON: timedelta(hours=2),
    EventType.IGNITION_OFF: timedelta(hours=2),
    EventType.TRIP_COMPLETED: timedelta(hours=4),
    EventType.VEHICLE_MOVING: timedelta(hours=1),
    EventType.ONLINE: timedelta(hours=1),
}

RETENTION_MAX_AGE = timedelta(days=30)
RETENTION_INFO_MAX_AGE = timedelta(days=7)


def expiry_for(event_type: EventType) -> timedelta:
    """How long an event stays "active" after it is created."""
    return _EXPIRY.get(event_type, DEFAULT_EXPIRY)


def cooldown_for(event_type: EventType, config: PipelineConfig) -> timedelta:
    """Debounce window for ``(vehicle, event_type)``."""
    if event_type == EventType.VEHICLE_MOVING:
        return timedelta(minutes=config.moving_cooldown_minutes)
    return timedelta(minutes=config.event_cooldown_minutes)


def within_cooldown(previous_at: datetime | None, incoming_at: datetime, cooldown: timedelta) -> bool:
    """True when *incoming_at* falls inside the window around the last event.

    The comparison is symmetric so a replayed, slightly older sample cannot
    sneak a duplicate in just before an existing event.
    """
    if previous_at is None:
        return False
    return abs(incoming_at - previous_at) < cooldown


def is_expired(now: datetime, expires_at: datetime) -> bool:
    return now >= expires_at


def should_purge(event: Event, now: datetime) -> bool:
    """Retention rule.

    Policy:
    - expired and acknowledged -> purge
    - older than 7 days and informational -> purge
    - older than 30 days -> purge
    """
    if event.acknowledged and is_expired(now, event.expires_at):
        return True
    age = now - event.created_at
    if event.severity == EventSeverity.INFO and age > RETENTION_INFO_MAX_AGE:
        return True
    return age > RETENTION_MAX_AGE
