"""MQTT position ingestion: payload decoding and threaded runtime."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from typing import Any, cast

import paho.mqtt.client as mqtt

from fleetsense.exceptions import FleetSenseError, InputError
from fleetsense.models.position import PositionSample

_VEHICLE_KEYS = ("vehicle_id", "vehicleId", "deviceId", "device_id", "vin")


def _topic_vehicle_id(topic: str) -> str | None:
    tail = topic.rstrip("/").rsplit("/", 1)[-1]
    return tail or None


def decode_position_payload(
    payload: bytes,
    topic: str,
    *,
    logger: logging.Logger | None = None,
) -> list[PositionSample]:
    """Decode a JSON position message into samples.

    Accepts a single object, a list of objects, or ``{"positions": [...]}``.
    When an item carries no vehicle id, the last topic segment is used
    (``fleetsense/positions/<vehicle_id>``). Invalid items are skipped.

    Raises
    ------
    FleetSenseError
        If the payload is not JSON or has an unexpected shape.
    """
    log = logger or logging.getLogger(__name__)
    try:
        parsed = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise FleetSenseError(f"MQTT payload on {topic} is not JSON") from exc

    if isinstance(parsed, dict) and isinstance(parsed.get("positions"), list):
        items: list[Any] = parsed["positions"]
    elif isinstance(parsed, dict):
        items = [parsed]
    elif isinstance(parsed, list):
        items = parsed
    else:
        raise FleetSenseError(f"MQTT payload on {topic} is neither an object nor a list")

    fallback_vehicle = _topic_vehicle_id(topic)
    samples: list[PositionSample] = []
    for item in items:
        if not isinstance(item, dict):
            log.debug("Skipping non-object position item on %s", topic)
            continue
        vehicle_id = None if any(item.get(k) for k in _VEHICLE_KEYS) else fallback_vehicle
        try:
            samples.append(PositionSample.from_api(item, vehicle_id=vehicle_id))
        except InputError as exc:
            log.debug("Rejected MQTT position on %s: %s", topic, exc)
    return samples


class PositionMqttRuntime:
    """Threaded paho-mqtt runtime that emits parsed samples onto an asyncio loop."""

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        on_samples: Callable[[list[PositionSample]], None],
        keepalive: int = 60,
        client_id: str = "",
        username: str | None = None,
        password: str | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._loop = loop
        self._on_samples = on_samples
        self._keepalive = keepalive
        self._client_id = client_id
        self._username = username
        self._password = password
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._running = False
        self._topic: str | None = None

    @property
    def is_running(self) -> bool:
        """Whether the MQTT runtime is actively running."""
        return self._running

    def handle_message(self, topic: str, payload: bytes) -> None:
        """Decode one message and hand its samples to the event loop."""
        try:
            samples = decode_position_payload(payload, topic, logger=self._logger)
        except FleetSenseError:
            self._logger.debug("MQTT payload parse failure topic=%s", topic, exc_info=True)
            return
        if samples:
            self._logger.debug("MQTT decoded %d samples topic=%s", len(samples), topic)
            self._loop.call_soon_threadsafe(self._on_samples, samples)

    def start(self, *, host: str, port: int, topic: str, tls: bool = False) -> None:
        """Connect and subscribe."""
        self.stop()
        self._logger.debug("MQTT runtime start requested host=%s port=%s topic=%s", host, port, topic)

        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=self._client_id,
            protocol=mqtt.MQTTv5,
        )
        client.enable_logger(self._logger)
        if self._username:
            client.username_pw_set(self._username, self._password)
        if tls:
            client.tls_set()

        self._topic = topic

        def on_connect(
            c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.value != 0:
                self._logger.warning("MQTT connect failed: %s", reason_code)
                return
            self._logger.debug("MQTT connected reason=%s", reason_code)
            if self._topic:
                c.subscribe(self._topic, qos=1)

        def on_message(_c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            self.handle_message(msg.topic, msg.payload)

        def on_disconnect(
            _client: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if self._running:
                self._logger.debug("MQTT disconnected: %s", reason_code)

        client.on_connect = on_connect
        client.on_message = on_message
        client.on_disconnect = on_disconnect

        client.connect(host, port, keepalive=self._keepalive)
        client.loop_start()

        self._client = client
        self._running = True
        self._logger.debug("MQTT network loop started")

    def stop(self) -> None:
        """Stop and disconnect current MQTT client if running."""
        client = self._client
        self._client = None
        was_running = self._running
        self._running = False
        self._topic = None

        if client is None:
            return
        try:
            if was_running:
                client.disconnect()
        finally:
            client.loop_stop()
            self._logger.debug("MQTT network loop stopped")
