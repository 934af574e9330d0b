"""Tests for the MQTT sink."""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import paho.mqtt.client as mqtt
import pytest

from ruuvibridge.config.model import MqttConfig
from ruuvibridge.protocol import DataFormat, Measurement
from ruuvibridge.sinks.mqtt import (
    MqttSink,
    MqttSinkError,
    apply_tls_to_paho,
    build_connect_properties,
)


def _client(rc: int = mqtt.MQTT_ERR_SUCCESS) -> MagicMock:
    client = MagicMock()
    client.publish.return_value = MagicMock(rc=rc)
    return client


def _connected_sink(config: MqttConfig | None = None, client: MagicMock | None = None) -> MqttSink:
    sink = MqttSink(config or MqttConfig(), client=client or _client())
    sink.start()
    sink._on_connect(sink._client, None, None, MagicMock(is_failure=False), None)
    return sink


def test_start_connects_in_background() -> None:
    client = _client()
    sink = MqttSink(MqttConfig(host="broker", port=1884, keepalive=30), client=client)

    sink.start()

    assert sink.fsm_state == MqttSink.STATE_CONNECTING
    client.connect_async.assert_called_once()
    args, kwargs = client.connect_async.call_args
    assert args == ("broker", 1884)
    assert kwargs["keepalive"] == 30
    client.loop_start.assert_called_once()


def test_connect_callbacks_track_session_state() -> None:
    sink = _connected_sink()
    assert sink.is_connected is True

    sink._on_disconnect(sink._client, None, None, "gone", None)
    assert sink.is_connected is False

    sink._on_connect(sink._client, None, None, MagicMock(is_failure=False), None)
    assert sink.is_connected is True


def test_refused_connection_stays_disconnected() -> None:
    sink = MqttSink(MqttConfig(), client=_client())
    sink.start()

    sink._on_connect(sink._client, None, None, MagicMock(is_failure=True), None)

    assert sink.is_connected is False
    assert sink.fsm_state == MqttSink.STATE_DISCONNECTED


def test_build_point_serialises_measurement(format5_measurement: Measurement) -> None:
    sink = MqttSink(MqttConfig(topic_prefix="home/ruuvi"), client=_client())

    point = sink.build_point(format5_measurement, tag_name="Sauna")

    mac, messages = point.data
    assert mac == "CB:B8:33:4C:88:4F"
    assert len(messages) == 1
    assert messages[0].topic == "home/ruuvi/CB:B8:33:4C:88:4F"
    body = json.loads(messages[0].payload)
    assert body["temperature"] == 24.3
    assert body["data_format"] == 5
    assert body["name"] == "Sauna"
    assert "pm2_5" not in body


def test_build_point_requires_address() -> None:
    sink = MqttSink(MqttConfig(), client=_client())

    with pytest.raises(ValueError):
        sink.build_point(Measurement(data_format=DataFormat.FORMAT_6))


def test_write_point_publishes_with_configured_qos(format5_measurement: Measurement) -> None:
    client = _client()
    sink = _connected_sink(MqttConfig(qos=1, retain=True), client)

    sink.write_point(sink.build_point(format5_measurement))

    client.publish.assert_called_once()
    args, kwargs = client.publish.call_args
    assert args[0] == "ruuvi_measurements/CB:B8:33:4C:88:4F"
    assert kwargs == {"qos": 1, "retain": True}


def test_write_point_raises_when_disconnected(format5_measurement: Measurement) -> None:
    client = _client()
    sink = MqttSink(MqttConfig(), client=client)

    with pytest.raises(MqttSinkError, match="not connected"):
        sink.write_point(sink.build_point(format5_measurement))
    client.publish.assert_not_called()


def test_write_point_raises_on_publish_error(format5_measurement: Measurement) -> None:
    sink = _connected_sink(client=_client(rc=mqtt.MQTT_ERR_NO_CONN))

    with pytest.raises(MqttSinkError, match="publish"):
        sink.write_point(sink.build_point(format5_measurement))


def test_discovery_is_published_once_per_session(format5_measurement: Measurement) -> None:
    client = _client()
    sink = _connected_sink(MqttConfig(homeassistant_prefix="homeassistant"), client)

    first = sink.build_point(format5_measurement, tag_name="Sauna")
    _, messages = first.data
    discovery = messages[:-1]
    assert discovery
    assert all(message.retain for message in discovery)
    topics = {message.topic for message in discovery}
    assert "homeassistant/sensor/ruuvi_cbb8334c884f/temperature/config" in topics
    config = json.loads(discovery[0].payload)
    assert config["state_topic"] == "ruuvi_measurements/CB:B8:33:4C:88:4F"
    assert config["device"]["name"] == "Sauna"

    sink.write_point(first)
    assert client.publish.call_count == len(messages)

    _, second = sink.build_point(format5_measurement).data
    assert len(second) == 1

    # A new broker session re-announces.
    sink._on_disconnect(sink._client, None, None, "gone", None)
    sink._on_connect(sink._client, None, None, MagicMock(is_failure=False), None)
    _, third = sink.build_point(format5_measurement).data
    assert len(third) == len(messages)


def test_discovery_only_covers_present_fields(format5_measurement: Measurement) -> None:
    sink = MqttSink(MqttConfig(homeassistant_prefix="ha"), client=_client())

    messages = sink.discovery_messages(format5_measurement)

    fields = {message.topic.split("/")[3] for message in messages}
    assert {"temperature", "humidity", "pressure", "battery_voltage"} <= fields
    assert "co2" not in fields
    assert "rssi" not in fields


def test_close_stops_network_loop() -> None:
    client = _client()
    sink = _connected_sink(client=client)

    sink.close()

    client.disconnect.assert_called_once()
    client.loop_stop.assert_called_once()
    assert sink.is_connected is False


def test_apply_tls_to_paho() -> None:
    client = MagicMock()
    config = MqttConfig(
        tls=True,
        tls_insecure=True,
        cafile="/etc/ssl/ca.pem",
        certfile="/etc/ssl/client.pem",
        keyfile="/etc/ssl/client.key",
    )

    apply_tls_to_paho(client, config)

    client.tls_set.assert_called_once_with(
        ca_certs="/etc/ssl/ca.pem",
        certfile="/etc/ssl/client.pem",
        keyfile="/etc/ssl/client.key",
    )
    client.tls_insecure_set.assert_called_once_with(True)


def test_apply_tls_to_paho_disabled() -> None:
    client = MagicMock()

    apply_tls_to_paho(client, MqttConfig(tls=False))

    client.tls_set.assert_not_called()


def test_connect_properties() -> None:
    props = build_connect_properties()

    assert props.SessionExpiryInterval == 0
