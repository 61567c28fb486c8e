"""Custom exception hierarchy for fleetsense."""

from __future__ import annotations


class FleetSenseError(Exception):
    """Base exception for all fleetsense errors."""


class FleetSenseConfigError(FleetSenseError):
    """Invalid or missing configuration."""


class InputError(FleetSenseError):
    """A position sample is malformed or out of range.

    The offending sample is rejected on its own; the rest of a batch
    continues.
    """

    def __init__(
        self,
        message: str,
        *,
        vehicle_id: str | None = None,
        payload: object = None,
    ) -> None:
        self.vehicle_id = vehicle_id
        self.payload = payload
        super().__init__(message)


class StateGapError(FleetSenseError):
    """A detection rule needs state (usually the previous sample) that does not exist."""

    def __init__(self, message: str, *, rule: str = "") -> None:
        self.rule = rule
        super().__init__(message)


class ComputationError(FleetSenseError):
    """A derived record cannot be computed without producing corrupt values.

    Examples are zero-duration trips or an empty aggregation window.
    The derived record is discarded.
    """


class StorageError(FleetSenseError):
    """A read or write against the insight store failed."""

    def __init__(
        self,
        message: str,
        *,
        operation: str = "",
        attempts: int = 0,
    ) -> None:
        self.operation = operation
        self.attempts = attempts
        super().__init__(message)
