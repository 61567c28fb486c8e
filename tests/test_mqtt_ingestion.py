from __future__ import annotations

import asyncio
import json
from datetime import UTC, datetime, timedelta

import pytest

from fleetsense._mqtt import PositionMqttRuntime, decode_position_payload
from fleetsense.exceptions import FleetSenseError
from fleetsense.ingestion.buffer import ReorderBuffer
from fleetsense.models.position import PositionSample

_TOPIC = "fleetsense/positions/VEH-9"
# 2026-03-02 08:00:00 UTC
_EPOCH = 1_772_438_400


def _payload(obj: object) -> bytes:
    return json.dumps(obj).encode("utf-8")


def _fix(offset: int = 0, **extra: object) -> dict[str, object]:
    return {"gpsTime": _EPOCH + offset, "lat": 52.37, "lng": 4.89, **extra}


# ------------------------------------------------------------------
# Payload decoding
# ------------------------------------------------------------------


class TestDecodePayload:
    def test_single_object_uses_topic_vehicle(self) -> None:
        (sample,) = decode_position_payload(_payload(_fix(speed=12)), _TOPIC)
        assert sample.vehicle_id == "VEH-9"
        assert sample.speed == 12.0
        assert sample.timestamp == datetime(2026, 3, 2, 8, 0, tzinfo=UTC)

    def test_payload_vehicle_wins_over_topic(self) -> None:
        (sample,) = decode_position_payload(_payload(_fix(deviceId="VEH-1")), _TOPIC)
        assert sample.vehicle_id == "VEH-1"

    def test_list_and_positions_wrapper(self) -> None:
        as_list = decode_position_payload(_payload([_fix(0), _fix(30)]), _TOPIC)
        wrapped = decode_position_payload(_payload({"positions": [_fix(0), _fix(30)]}), _TOPIC)
        assert len(as_list) == 2
        assert as_list == wrapped

    def test_invalid_items_are_skipped(self) -> None:
        samples = decode_position_payload(_payload([_fix(0), _fix(30, lat=123.0), "noise"]), _TOPIC)
        assert [s.timestamp for s in samples] == [datetime(2026, 3, 2, 8, 0, tzinfo=UTC)]

    @pytest.mark.parametrize("raw", [b"not json", b"\xff\xfe", b"42"])
    def test_bad_payload_raises(self, raw: bytes) -> None:
        with pytest.raises(FleetSenseError):
            decode_position_payload(raw, _TOPIC)


# ------------------------------------------------------------------
# Runtime hand-off
# ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_runtime_hands_samples_to_loop() -> None:
    received: list[PositionSample] = []
    runtime = PositionMqttRuntime(loop=asyncio.get_running_loop(), on_samples=received.extend)

    runtime.handle_message(_TOPIC, _payload(_fix(speed=5)))
    runtime.handle_message(_TOPIC, b"garbage")
    await asyncio.sleep(0)

    assert [s.vehicle_id for s in received] == ["VEH-9"]
    assert runtime.is_running is False


def test_stop_without_start_is_noop() -> None:
    loop = asyncio.new_event_loop()
    runtime = PositionMqttRuntime(loop=loop, on_samples=lambda samples: None)
    try:
        runtime.stop()
        assert runtime.is_running is False
    finally:
        loop.close()


# ------------------------------------------------------------------
# Reorder buffer
# ------------------------------------------------------------------


def _sample(seconds: int, vehicle_id: str = "VEH-1") -> PositionSample:
    return PositionSample(
        vehicle_id=vehicle_id,
        timestamp=datetime(2026, 3, 2, 8, 0, tzinfo=UTC) + timedelta(seconds=seconds),
        latitude=52.37,
        longitude=4.89,
    )


class TestReorderBuffer:
    def test_releases_in_timestamp_order(self) -> None:
        buffer = ReorderBuffer(timedelta(seconds=60))
        released: list[PositionSample] = []
        for seconds in (0, 60, 30, 90, 200):
            released.extend(buffer.push(_sample(seconds)))

        assert [int((s.timestamp - _sample(0).timestamp).total_seconds()) for s in released] == [0, 30, 60, 90]
        assert buffer.pending_count == 1
        assert [s.timestamp for s in buffer.flush()] == [_sample(200).timestamp]
        assert buffer.pending_count == 0

    def test_duplicates_are_dropped(self) -> None:
        buffer = ReorderBuffer(timedelta(seconds=60))
        buffer.push(_sample(0))
        assert buffer.push(_sample(0)) == []
        assert buffer.pending_count == 1

    def test_vehicles_have_independent_watermarks(self) -> None:
        buffer = ReorderBuffer(timedelta(seconds=60))
        buffer.push(_sample(0, "VEH-1"))
        assert buffer.push(_sample(600, "VEH-2")) == []
        assert [s.vehicle_id for s in buffer.flush("VEH-1")] == ["VEH-1"]
        assert buffer.pending_count == 1

    def test_zero_window_passes_through(self) -> None:
        buffer = ReorderBuffer(timedelta(0))
        assert len(buffer.push(_sample(0))) == 1

    def test_negative_window_rejected(self) -> None:
        with pytest.raises(ValueError):
            ReorderBuffer(timedelta(seconds=-1))
