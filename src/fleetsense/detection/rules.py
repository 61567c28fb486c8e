"""Event detection rules.

Each rule is a plain function taking a :class:`RuleContext` and returning
zero or more :class:`Event` objects. Rules never share state with each
other; a rule that needs the previous sample calls
:meth:`RuleContext.require_previous`, which raises ``StateGapError`` when
the vehicle has no prior sample.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta
from typing import Any

from fleetsense._geo import path_length_km
from fleetsense.config import PipelineConfig
from fleetsense.exceptions import StateGapError
from fleetsense.models.event import Event, EventSeverity, EventType
from fleetsense.models.position import PositionSample
from fleetsense.state.policy import expiry_for

HistoryProvider = Callable[[str, datetime, datetime], Sequence[PositionSample]]

#: How far back the ignition-off rule looks for the start of the ignition-on run.
TRIP_SUMMARY_LOOKBACK = timedelta(hours=24)


@dataclasses.dataclass(frozen=True)
class RuleContext:
    """Inputs shared by every rule for one evaluated sample."""

    sample: PositionSample
    previous: PositionSample | None
    config: PipelineConfig
    history: HistoryProvider | None = None

    def require_previous(self, rule: str) -> PositionSample:
        if self.previous is None:
            raise StateGapError(f"{rule} needs a previous sample", rule=rule)
        return self.previous

    def lookback(self, window: timedelta) -> list[PositionSample]:
        """Samples strictly before the current one within *window*, oldest first.

        Always ends with ``previous`` when there is one.
        """
        samples: list[PositionSample] = []
        if self.history is not None:
            end = self.sample.timestamp
            samples = list(self.history(self.sample.vehicle_id, end - window, end))
        if self.previous is not None and (not samples or samples[-1].timestamp < self.previous.timestamp):
            samples.append(self.previous)
        return samples


Rule = Callable[[RuleContext], list[Event]]


def _event(
    ctx: RuleContext,
    event_type: EventType,
    severity: EventSeverity,
    title: str,
    description: str,
    *,
    metadata: dict[str, Any] | None = None,
    value_before: float | None = None,
    value_after: float | None = None,
    threshold: float | None = None,
) -> Event:
    sample = ctx.sample
    return Event(
        vehicle_id=sample.vehicle_id,
        event_type=event_type,
        severity=severity,
        title=title,
        description=description,
        metadata=metadata or {},
        latitude=sample.latitude,
        longitude=sample.longitude,
        value_before=value_before,
        value_after=value_after,
        threshold=threshold,
        created_at=sample.timestamp,
        expires_at=sample.timestamp + expiry_for(event_type),
    )


# ----------------------------------------------------------------------
# Battery / speed
# ----------------------------------------------------------------------


def battery_rule(ctx: RuleContext) -> list[Event]:
    """Edge-triggered low and critical battery.

    The two thresholds are tracked independently: a slide 25 -> 18 -> 8
    produces one ``low_battery`` then one ``critical_battery``. A previous
    sample without a reading counts as "above".
    """
    current = ctx.sample.battery_percent
    if current is None:
        return []
    previous = ctx.previous.battery_percent if ctx.previous is not None else None
    low = ctx.config.low_battery_percent
    critical = ctx.config.critical_battery_percent
    metadata = {"battery_percent": current, "previous_percent": previous}

    if current < critical and (previous is None or previous >= critical):
        return [
            _event(
                ctx,
                EventType.CRITICAL_BATTERY,
                EventSeverity.CRITICAL,
                "Critical Battery Level",
                f"Battery critically low at {current:.0f}%",
                metadata=metadata,
                value_before=previous,
                value_after=current,
                threshold=critical,
            )
        ]
    if critical <= current < low and (previous is None or previous >= low):
        return [
            _event(
                ctx,
                EventType.LOW_BATTERY,
                EventSeverity.WARNING,
                "Low Battery Warning",
                f"Battery dropped to {current:.0f}%",
                metadata=metadata,
                value_before=previous,
                value_after=current,
                threshold=low,
            )
        ]
    return []


def overspeed_rule(ctx: RuleContext) -> list[Event]:
    speed = ctx.sample.speed
    limit = ctx.config.speed_limit_kmh
    previous_speed = ctx.previous.speed if ctx.previous is not None else None
    if speed <= limit or (previous_speed is not None and previous_speed > limit):
        return []

    if speed > ctx.config.critical_speed_kmh:
        severity, title = EventSeverity.CRITICAL, "Critical: Excessive Speed"
    else:
        severity, title = EventSeverity.ERROR, "Overspeeding Detected"
    return [
        _event(
            ctx,
            EventType.OVERSPEEDING,
            severity,
            title,
            f"Vehicle traveling at {speed:.0f} km/h",
            metadata={"speed_kmh": speed, "limit_kmh": limit},
            value_before=previous_speed,
            value_after=speed,
            threshold=limit,
        )
    ]


def rapid_acceleration_rule(ctx: RuleContext) -> list[Event]:
    previous = ctx.require_previous("rapid_acceleration")
    delta = ctx.sample.speed - previous.speed
    if delta <= ctx.config.rapid_acceleration_kmh:
        return []
    return [
        _event(
            ctx,
            EventType.RAPID_ACCELERATION,
            EventSeverity.WARNING,
            "Rapid Acceleration",
            f"Speed increased by {delta:.0f} km/h",
            metadata={"speed_before": previous.speed, "speed_after": ctx.sample.speed, "delta": delta},
            value_before=previous.speed,
            value_after=ctx.sample.speed,
            threshold=ctx.config.rapid_acceleration_kmh,
        )
    ]


def harsh_braking_rule(ctx: RuleContext) -> list[Event]:
    previous = ctx.require_previous("harsh_braking")
    drop = previous.speed - ctx.sample.speed
    if drop <= ctx.config.harsh_braking_kmh:
        return []
    return [
        _event(
            ctx,
            EventType.HARSH_BRAKING,
            EventSeverity.WARNING,
            "Harsh Braking Detected",
            f"Speed dropped by {drop:.0f} km/h",
            metadata={"speed_before": previous.speed, "speed_after": ctx.sample.speed, "delta": drop},
            value_before=previous.speed,
            value_after=ctx.sample.speed,
            threshold=ctx.config.harsh_braking_kmh,
        )
    ]


# ----------------------------------------------------------------------
# Ignition / movement
# ----------------------------------------------------------------------


def _trip_summary(ctx: RuleContext) -> dict[str, Any]:
    """Summarize the ignition-on run that the current sample just closed."""
    history = ctx.lookback(TRIP_SUMMARY_LOOKBACK)
    run_start = len(history)
    while run_start > 0 and history[run_start - 1].ignition_on:
        run_start -= 1
    run = history[run_start:]
    sample = ctx.sample
    if not run:
        return {"duration_minutes": 0.0, "distance_km": 0.0, "final_battery": sample.battery_percent}

    first = run[0]
    distance: float | None = None
    if first.odometer_total is not None and sample.odometer_total is not None:
        delta = sample.odometer_total - first.odometer_total
        if delta > 0:
            distance = delta
    if distance is None:
        distance = path_length_km([s.point for s in run] + [sample.point])

    return {
        "trip_start": first.timestamp.isoformat(),
        "duration_minutes": round((sample.timestamp - first.timestamp).total_seconds() / 60.0, 1),
        "distance_km": round(distance, 3),
        "final_battery": sample.battery_percent,
    }


def ignition_rule(ctx: RuleContext) -> list[Event]:
    previous = ctx.require_previous("ignition")
    sample = ctx.sample
    if not previous.ignition_on and sample.ignition_on:
        return [
            _event(
                ctx,
                EventType.IGNITION_ON,
                EventSeverity.INFO,
                "Vehicle Started",
                "Ignition turned on",
                value_before=0.0,
                value_after=1.0,
            )
        ]
    if previous.ignition_on and not sample.ignition_on:
        summary = _trip_summary(ctx)
        return [
            _event(
                ctx,
                EventType.IGNITION_OFF,
                EventSeverity.INFO,
                "Engine Stopped",
                f"Ignition turned off after {summary['duration_minutes']:.0f} min",
                metadata=summary,
                value_before=1.0,
                value_after=0.0,
            ),
            _event(
                ctx,
                EventType.TRIP_COMPLETED,
                EventSeverity.INFO,
                "Trip Completed",
                f"Trip of {summary['distance_km']:.1f} km in {summary['duration_minutes']:.0f} min",
                metadata=summary,
                value_after=summary["distance_km"],
            ),
        ]
    return []


def vehicle_moving_rule(ctx: RuleContext) -> list[Event]:
    previous = ctx.require_previous("vehicle_moving")
    sample = ctx.sample
    threshold = ctx.config.moving_speed_kmh
    if not sample.ignition_on or sample.speed <= threshold or previous.speed > threshold:
        return []
    return [
        _event(
            ctx,
            EventType.VEHICLE_MOVING,
            EventSeverity.INFO,
            "Vehicle Started Moving",
            f"Vehicle moving at {sample.speed:.0f} km/h",
            metadata={"speed_kmh": sample.speed},
            value_before=previous.speed,
            value_after=sample.speed,
            threshold=threshold,
        )
    ]


def idle_rule(ctx: RuleContext) -> list[Event]:
    previous = ctx.require_previous("idle_too_long")
    sample = ctx.sample
    slow = ctx.config.idle_speed_kmh
    if not sample.ignition_on or sample.speed >= slow or previous.speed >= slow:
        return []

    history = ctx.lookback(timedelta(hours=ctx.config.idle_lookback_hours))
    run_start = sample
    for candidate in reversed(history):
        if not candidate.ignition_on or candidate.speed >= slow:
            break
        run_start = candidate
    idle_minutes = (sample.timestamp - run_start.timestamp).total_seconds() / 60.0
    if idle_minutes < ctx.config.idle_alert_minutes:
        return []
    return [
        _event(
            ctx,
            EventType.IDLE_TOO_LONG,
            EventSeverity.WARNING,
            "Extended Idling",
            f"Vehicle idling for {idle_minutes:.0f} minutes",
            metadata={"idle_minutes": round(idle_minutes, 1), "idle_since": run_start.timestamp.isoformat()},
            value_after=idle_minutes,
            threshold=ctx.config.idle_alert_minutes,
        )
    ]


def connectivity_rule(ctx: RuleContext) -> list[Event]:
    previous = ctx.require_previous("connectivity")
    sample = ctx.sample
    if previous.is_online and not sample.is_online:
        return [
            _event(
                ctx,
                EventType.OFFLINE,
                EventSeverity.WARNING,
                "Vehicle Offline",
                "Tracker stopped reporting as online",
                value_before=1.0,
                value_after=0.0,
            )
        ]
    if not previous.is_online and sample.is_online:
        return [
            _event(
                ctx,
                EventType.ONLINE,
                EventSeverity.INFO,
                "Vehicle Back Online",
                "Tracker reconnected",
                value_before=0.0,
                value_after=1.0,
            )
        ]
    return []


DEFAULT_RULES: tuple[tuple[str, Rule], ...] = (
    ("battery", battery_rule),
    ("overspeed", overspeed_rule),
    ("rapid_acceleration", rapid_acceleration_rule),
    ("harsh_braking", harsh_braking_rule),
    ("ignition", ignition_rule),
    ("vehicle_moving", vehicle_moving_rule),
    ("idle_too_long", idle_rule),
    ("connectivity", connectivity_rule),
)
