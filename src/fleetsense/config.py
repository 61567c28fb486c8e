"""Pipeline configuration for fleetsense."""

from __future__ import annotations

import dataclasses
import os
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fleetsense._constants import ENV_PREFIX
from fleetsense.exceptions import FleetSenseConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclasses.dataclass(frozen=True)
class PipelineConfig:
    """Thresholds and runtime knobs for the insight pipeline.

    Parameters
    ----------
    speed_limit_kmh : float
        Speed above which ``overspeeding`` fires.
    critical_speed_kmh : float
        Speed above which an overspeed event is escalated to ``critical``.
    low_battery_percent : float
        Battery level below which ``low_battery`` fires.
    critical_battery_percent : float
        Battery level below which ``critical_battery`` fires.
    rapid_acceleration_kmh : float
        Speed gain between consecutive samples that counts as rapid acceleration.
    harsh_braking_kmh : float
        Speed loss between consecutive samples that counts as harsh braking.
    moving_speed_kmh : float
        Speed that separates "stationary" from "moving" for ``vehicle_moving``.
    idle_speed_kmh : float
        Ignition-on samples below this speed count towards an idle run.
    idle_alert_minutes : float
        Idle run length at which ``idle_too_long`` fires.
    idle_lookback_hours : float
        How far back the idle rule looks for the start of the run.
    event_cooldown_minutes : float
        Generic per ``(vehicle, type)`` debounce window.
    moving_cooldown_minutes : float
        Debounce window for ``vehicle_moving``.
    trip_gap_minutes : float
        Gap between ignition-on samples that splits a trip, and the idle
        run length that ends an idle-gap trip.
    min_trip_distance_km : float
        Noise floor for trips measured by great-circle fallback.
    trip_window_padding_hours : float
        Extra history read on each side of a windowed re-segmentation so
        trips crossing the window edges are rebuilt whole.
    cluster_radius_m : float
        Merge radius for learned locations.
    min_dwell_minutes : float
        Shortest parking or idle episode that is learned as a visit.
    dwell_idle_speed_kmh : float
        Speed below which an ignition-on sample counts as an idle dwell.
    nearby_radius_m : float
        Default radius for "am I at a known place" lookups.
    classification_min_visits : int
        Visits required before a learned location is classified.
    classification_history_days : int
        Position history window used by the classifier.
    pattern_strong_share : float
        Share of a cluster's visits a time-of-day bucket needs to be "strong".
    impossible_speed_kmh : float
        Implied speed between samples that marks an impossible jump.
    timezone : str
        IANA zone used for day windows and time-of-day buckets.
    health_workers : int
        Concurrent vehicles in a daily health sweep.
    storage_retries : int
        Attempts for a store write before the ``StorageError`` is surfaced.
    retry_backoff_seconds : float
        Initial backoff between storage retries, doubled per attempt.
    reorder_window_seconds : float
        How long the ingestion buffer holds samples to restore timestamp order.
    mqtt_host : str or None
        Broker host for :class:`~fleetsense._mqtt.PositionMqttRuntime`.
    mqtt_port : int
        Broker port.
    mqtt_topic : str
        Topic carrying JSON position payloads.
    mqtt_keepalive : int
        MQTT keepalive in seconds.
    mqtt_tls : bool
        Enable TLS for the broker connection.
    mqtt_client_id : str
        Client id sent to the broker; empty lets the broker assign one.
    mqtt_username : str or None
        Broker username.
    mqtt_password : str or None
        Broker password, used together with ``mqtt_username``.
    """

    speed_limit_kmh: float = 100.0
    critical_speed_kmh: float = 120.0
    low_battery_percent: float = 20.0
    critical_battery_percent: float = 10.0
    rapid_acceleration_kmh: float = 30.0
    harsh_braking_kmh: float = 40.0
    moving_speed_kmh: float = 5.0
    idle_speed_kmh: float = 5.0
    idle_alert_minutes: float = 30.0
    idle_lookback_hours: float = 2.0
    event_cooldown_minutes: float = 5.0
    moving_cooldown_minutes: float = 10.0
    trip_gap_minutes: float = 3.0
    min_trip_distance_km: float = 0.05
    trip_window_padding_hours: float = 12.0
    cluster_radius_m: float = 50.0
    min_dwell_minutes: float = 15.0
    dwell_idle_speed_kmh: float = 2.0
    nearby_radius_m: float = 100.0
    classification_min_visits: int = 3
    classification_history_days: int = 30
    pattern_strong_share: float = 0.25
    impossible_speed_kmh: float = 220.0
    timezone: str = "UTC"
    health_workers: int = 4
    storage_retries: int = 3
    retry_backoff_seconds: float = 0.5
    reorder_window_seconds: float = 30.0
    mqtt_host: str | None = None
    mqtt_port: int = 1883
    mqtt_topic: str = "fleetsense/positions/#"
    mqtt_keepalive: int = 60
    mqtt_tls: bool = False
    mqtt_client_id: str = ""
    mqtt_username: str | None = None
    mqtt_password: str | None = None

    def __post_init__(self) -> None:
        if self.critical_battery_percent >= self.low_battery_percent:
            raise FleetSenseConfigError("critical_battery_percent must be below low_battery_percent")
        if self.critical_speed_kmh < self.speed_limit_kmh:
            raise FleetSenseConfigError("critical_speed_kmh must not be below speed_limit_kmh")
        if self.health_workers < 1:
            raise FleetSenseConfigError("health_workers must be at least 1")
        if self.storage_retries < 1:
            raise FleetSenseConfigError("storage_retries must be at least 1")
        if self.cluster_radius_m <= 0:
            raise FleetSenseConfigError("cluster_radius_m must be positive")
        if self.trip_window_padding_hours < 0:
            raise FleetSenseConfigError("trip_window_padding_hours must not be negative")
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise FleetSenseConfigError(f"Unknown timezone: {self.timezone!r}") from exc

    @property
    def tzinfo(self) -> ZoneInfo:
        """The configured zone as a ``ZoneInfo``."""
        return ZoneInfo(self.timezone)

    @classmethod
    def from_env(cls, **overrides: Any) -> PipelineConfig:
        """Create configuration from environment variables.

        Every field can be set with ``FLEETSENSE_<FIELD_NAME>`` in upper
        case, e.g. ``FLEETSENSE_SPEED_LIMIT_KMH=90``. Explicit keyword
        arguments override environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        PipelineConfig
            Populated configuration.

        Raises
        ------
        FleetSenseConfigError
            If an environment value cannot be parsed for its field.
        """
        env = os.environ
        config_kwargs: dict[str, Any] = {}

        for field in dataclasses.fields(cls):
            if field.name in overrides:
                continue
            env_key = f"{ENV_PREFIX}{field.name.upper()}"
            raw = env.get(env_key)
            if raw is None:
                continue

            default = field.default
            try:
                if isinstance(default, bool):
                    config_kwargs[field.name] = _env_bool(raw, default)
                elif isinstance(default, int):
                    config_kwargs[field.name] = int(raw)
                elif isinstance(default, float):
                    config_kwargs[field.name] = float(raw)
                else:
                    config_kwargs[field.name] = raw.strip() or None
            except ValueError as exc:
                raise FleetSenseConfigError(f"Invalid value for {env_key}: {raw!r}") from exc

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
