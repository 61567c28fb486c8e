"""Ingestion layer.

This package contains adapters that receive raw telemetry (batches, MQTT)
and turn it into ordered, de-duplicated ``PositionSample`` streams.
"""

__all__: list[str] = []
