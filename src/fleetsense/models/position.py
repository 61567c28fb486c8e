"""Position sample model."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import AliasChoices, Field, ValidationError, field_validator

from fleetsense.exceptions import InputError
from fleetsense.ingestion.normalize import safe_bool, safe_float
from fleetsense.models._base import FleetBaseModel, FleetTimestamp


class PositionSample(FleetBaseModel):
    """One timestamped position/status reading for a vehicle.

    Parameters
    ----------
    vehicle_id : str
        Opaque vehicle key (device id, VIN, ...).
    timestamp : datetime
        GPS fix time, always timezone-aware UTC.
    latitude : float
        Latitude in degrees.
    longitude : float
        Longitude in degrees.
    speed : float
        Speed in km/h.
    ignition_on : bool
        Ignition/ACC state.
    battery_percent : float or None
        State of charge, 0-100.
    odometer_total : float or None
        Cumulative odometer in km.
    is_online : bool
        Whether the tracker reported itself as connected.
    raw : dict
        Original payload dict.
    """

    vehicle_id: str = Field(
        ...,
        validation_alias=AliasChoices("vehicle_id", "vehicleId", "deviceId", "device_id", "vin"),
    )
    timestamp: FleetTimestamp = Field(
        ...,
        validation_alias=AliasChoices("timestamp", "gpsTime", "gps_time", "gpsTimestamp", "time", "gpstime"),
    )
    latitude: float = Field(..., ge=-90.0, le=90.0, validation_alias=AliasChoices("latitude", "lat", "callat"))
    longitude: float = Field(
        ...,
        ge=-180.0,
        le=180.0,
        validation_alias=AliasChoices("longitude", "lon", "lng", "callon"),
    )
    speed: float = Field(default=0.0, ge=0.0, le=400.0, validation_alias=AliasChoices("speed", "gpsSpeed"))
    ignition_on: bool = Field(
        default=False,
        validation_alias=AliasChoices("ignition_on", "ignitionOn", "ignition", "accStatus", "acc"),
    )
    battery_percent: float | None = Field(
        default=None,
        ge=0.0,
        le=100.0,
        validation_alias=AliasChoices("battery_percent", "batteryPercent", "battery", "soc"),
    )
    odometer_total: float | None = Field(
        default=None,
        ge=0.0,
        validation_alias=AliasChoices("odometer_total", "odometerTotal", "odometer", "totalMileage", "totaldistance"),
    )
    is_online: bool = Field(default=True, validation_alias=AliasChoices("is_online", "isOnline", "online"))

    @field_validator("vehicle_id", mode="before")
    @classmethod
    def _normalize_vehicle_id(cls, value: Any) -> str:
        vehicle_id = str(value).strip() if value is not None else ""
        if not vehicle_id:
            raise ValueError("vehicle_id must be non-empty")
        return vehicle_id

    @field_validator("latitude", "longitude", "speed", "battery_percent", "odometer_total", mode="before")
    @classmethod
    def _coerce_floats(cls, value: Any) -> Any:
        parsed = safe_float(value)
        return value if parsed is None else parsed

    @field_validator("ignition_on", "is_online", mode="before")
    @classmethod
    def _coerce_flags(cls, value: Any) -> Any:
        parsed = safe_bool(value)
        return value if parsed is None else parsed

    @field_validator("timestamp")
    @classmethod
    def _ensure_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    @property
    def key(self) -> tuple[str, datetime]:
        """Delivery dedupe key."""
        return self.vehicle_id, self.timestamp

    @property
    def point(self) -> tuple[float, float]:
        return self.latitude, self.longitude

    @classmethod
    def from_api(cls, payload: dict[str, Any], *, vehicle_id: str | None = None) -> PositionSample:
        """Parse a raw tracker payload.

        Raises
        ------
        InputError
            If the payload is missing required fields or carries
            out-of-range values.
        """
        if not isinstance(payload, dict):
            raise InputError("Position payload must be an object", vehicle_id=vehicle_id, payload=payload)
        data = dict(payload)
        if vehicle_id is not None:
            data["vehicle_id"] = vehicle_id
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise InputError(
                f"Rejected position sample: {exc.error_count()} invalid field(s)",
                vehicle_id=vehicle_id or str(payload.get("vehicle_id") or payload.get("vehicleId") or "") or None,
                payload=payload,
            ) from exc
