"""MQTT publisher sink (paho-mqtt 2.x, MQTT v5)."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

import msgspec
import paho.mqtt.client as mqtt
from paho.mqtt.enums import CallbackAPIVersion
from paho.mqtt.packettypes import PacketTypes
from paho.mqtt.properties import Properties
from transitions import Machine

from ..config.model import MqttConfig
from ..protocol.measurement import Measurement
from .base import BufferedPoint, SinkError

logger = logging.getLogger("ruuvibridge.sinks.mqtt")

# field -> (friendly name, unit, Home Assistant device class)
DISCOVERY_FIELDS: dict[str, tuple[str, str | None, str | None]] = {
    "temperature": ("Temperature", "°C", "temperature"),
    "humidity": ("Humidity", "%", "humidity"),
    "pressure": ("Pressure", "Pa", "pressure"),
    "battery_voltage": ("Battery", "mV", "voltage"),
    "rssi": ("Signal strength", "dBm", "signal_strength"),
    "movement_counter": ("Movement counter", None, None),
    "pm1_0": ("PM1.0", "µg/m³", "pm1"),
    "pm2_5": ("PM2.5", "µg/m³", "pm25"),
    "pm10_0": ("PM10", "µg/m³", "pm10"),
    "co2": ("CO2", "ppm", "carbon_dioxide"),
    "voc_index": ("VOC index", None, None),
    "nox_index": ("NOx index", None, None),
    "luminosity": ("Illuminance", "lx", "illuminance"),
}


class MqttSinkError(SinkError):
    def __init__(self, reason: str) -> None:
        super().__init__("mqtt", reason)


class MqttMessage(msgspec.Struct, frozen=True):
    topic: str
    payload: bytes
    retain: bool = False


def build_connect_properties() -> Properties:
    props = Properties(PacketTypes.CONNECT)
    props.SessionExpiryInterval = 0
    return props


def apply_tls_to_paho(client: Any, config: MqttConfig) -> None:
    """Apply TLS settings to a paho-mqtt Client instance."""
    if not config.tls:
        return

    tls_kwargs = {}
    if config.cafile:
        tls_kwargs["ca_certs"] = config.cafile
    if config.certfile:
        tls_kwargs["certfile"] = config.certfile
    if config.keyfile:
        tls_kwargs["keyfile"] = config.keyfile

    client.tls_set(**tls_kwargs)

    if config.tls_insecure:
        client.tls_insecure_set(True)


def _topic_id(mac: str) -> str:
    return mac.replace(":", "").lower()


class MqttSink:
    """Publish each measurement as JSON to ``<topic_prefix>/<MAC>``.

    paho runs its network loop in its own thread and reconnects on its own;
    this class only tracks whether the broker session is up. Publishing while
    it is not raises :class:`MqttSinkError` so the delivery buffer retries.
    """

    if TYPE_CHECKING:
        fsm_state: str
        connect: Callable[[], bool]
        connected: Callable[[], bool]
        disconnect: Callable[[], bool]

    STATE_DISCONNECTED = "disconnected"
    STATE_CONNECTING = "connecting"
    STATE_CONNECTED = "connected"

    name = "mqtt"

    def __init__(self, config: MqttConfig, *, client: mqtt.Client | None = None) -> None:
        self.config = config
        self.minimum_interval = config.minimum_interval
        self._announced: set[str] = set()
        self._announced_lock = threading.Lock()

        self.machine = Machine(
            model=self,
            states=[self.STATE_DISCONNECTED, self.STATE_CONNECTING, self.STATE_CONNECTED],
            initial=self.STATE_DISCONNECTED,
            model_attribute="fsm_state",
            ignore_invalid_triggers=True,
        )
        self.machine.add_transition("connect", "*", self.STATE_CONNECTING)
        self.machine.add_transition("connected", self.STATE_CONNECTING, self.STATE_CONNECTED)
        self.machine.add_transition("disconnect", "*", self.STATE_DISCONNECTED)

        self._client = client or self._build_client()
        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect

    def _build_client(self) -> mqtt.Client:
        client = mqtt.Client(
            callback_api_version=CallbackAPIVersion.VERSION2,
            client_id=self.config.client_id,
            protocol=mqtt.MQTTv5,
        )
        if self.config.username:
            client.username_pw_set(self.config.username, self.config.password)
        else:
            logger.warning(
                "MQTT connecting without authentication (anonymous); "
                "consider setting username/password for production"
            )
        apply_tls_to_paho(client, self.config)
        client.enable_logger(logging.getLogger("ruuvibridge.mqtt.client"))
        client.reconnect_delay_set(min_delay=1, max_delay=60)
        return client

    @property
    def is_connected(self) -> bool:
        return self.fsm_state == self.STATE_CONNECTED

    def start(self) -> None:
        """Begin connecting in the background."""
        self.trigger("connect")
        logger.info("Connecting to MQTT broker %s:%d", self.config.host, self.config.port)
        self._client.connect_async(
            self.config.host,
            self.config.port,
            keepalive=self.config.keepalive,
            properties=build_connect_properties(),
        )
        self._client.loop_start()

    def close(self) -> None:
        self._client.disconnect()
        self._client.loop_stop()
        self.trigger("disconnect")

    def _on_connect(
        self,
        client: mqtt.Client,
        userdata: Any,
        flags: Any,
        reason_code: Any,
        properties: Any,
    ) -> None:
        if getattr(reason_code, "is_failure", False):
            logger.error("MQTT connection refused: %s", reason_code)
            self.trigger("disconnect")
            return
        if self.fsm_state == self.STATE_DISCONNECTED:
            self.trigger("connect")
        self.trigger("connected")
        # Retained discovery configs may have been lost with a broker restart.
        with self._announced_lock:
            self._announced.clear()
        logger.info("Connected to MQTT broker (Paho v2/MQTTv5).")

    def _on_disconnect(
        self,
        client: mqtt.Client,
        userdata: Any,
        flags: Any,
        reason_code: Any,
        properties: Any,
    ) -> None:
        self.trigger("disconnect")
        logger.warning("Disconnected from MQTT broker: %s", reason_code)

    def state_topic(self, mac: str) -> str:
        return f"{self.config.topic_prefix}/{mac}"

    def discovery_messages(
        self, measurement: Measurement, *, tag_name: str | None = None
    ) -> list[MqttMessage]:
        """Home Assistant MQTT discovery configs for the fields *measurement* carries."""
        prefix = self.config.homeassistant_prefix
        if not prefix or measurement.mac is None:
            return []
        node = f"ruuvi_{_topic_id(measurement.mac)}"
        device = {
            "identifiers": [node],
            "name": tag_name or f"Ruuvi {measurement.mac[-5:].replace(':', '')}",
            "manufacturer": "Ruuvi Innovations",
            "connections": [["mac", measurement.mac]],
        }
        values = measurement.to_dict()
        messages = []
        for field_name, (label, unit, device_class) in DISCOVERY_FIELDS.items():
            if values.get(field_name) is None:
                continue
            config: dict[str, Any] = {
                "name": label,
                "unique_id": f"{node}_{field_name}",
                "state_topic": self.state_topic(measurement.mac),
                "value_template": f"{{{{ value_json.{field_name} }}}}",
                "state_class": "measurement",
                "device": device,
            }
            if unit is not None:
                config["unit_of_measurement"] = unit
            if device_class is not None:
                config["device_class"] = device_class
            messages.append(
                MqttMessage(
                    topic=f"{prefix}/sensor/{node}/{field_name}/config",
                    payload=msgspec.json.encode(config),
                    retain=True,
                )
            )
        return messages

    def build_point(self, measurement: Measurement, *, tag_name: str | None = None) -> BufferedPoint:
        if measurement.mac is None:
            raise ValueError("measurement has no source address")
        body = measurement.to_dict()
        if tag_name:
            body["name"] = tag_name
        messages: list[MqttMessage] = []
        with self._announced_lock:
            announce = measurement.mac not in self._announced
        if announce:
            messages.extend(self.discovery_messages(measurement, tag_name=tag_name))
        messages.append(
            MqttMessage(
                topic=self.state_topic(measurement.mac),
                payload=msgspec.json.encode(body),
                retain=self.config.retain,
            )
        )
        return BufferedPoint(data=(measurement.mac, tuple(messages)))

    def write_point(self, point: BufferedPoint) -> None:
        if not self.is_connected:
            raise MqttSinkError("not connected to broker")
        mac, messages = point.data
        for message in messages:
            info = self._client.publish(
                message.topic,
                message.payload,
                qos=self.config.qos,
                retain=message.retain,
            )
            if info.rc != mqtt.MQTT_ERR_SUCCESS:
                raise MqttSinkError(f"publish to {message.topic} failed: {mqtt.error_string(info.rc)}")
        if len(messages) > 1:
            with self._announced_lock:
                self._announced.add(mac)


__all__ = ["MqttMessage", "MqttSink", "MqttSinkError", "apply_tls_to_paho", "build_connect_properties"]
