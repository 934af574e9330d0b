"""Tests for the ingestion loop."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator

import pytest
from helpers import RecordingSink, wait_for

from ruuvibridge.config.model import BufferConfig, MqttConfig, RuntimeConfig
from ruuvibridge.filter import TagFilter
from ruuvibridge.gateway import Gateway
from ruuvibridge.matter import MatterBridge
from ruuvibridge.protocol import DataFormat, Measurement, encode
from ruuvibridge.scanner import Advertisement

FORMAT_5_SAMPLE = bytes.fromhex("9904" "0512FC5394C37C0004FFFC040CAC364200CDCBB8334C884F")
FORMAT_5_MAC = "CB:B8:33:4C:88:4F"


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _advertisement(payload: bytes = FORMAT_5_SAMPLE, address: str = "01:02:03:04:05:06") -> Advertisement:
    return Advertisement(address=address, rssi=-60, manufacturer_data=payload, timestamp=1_700_000_000.0)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def gateway(sink: RecordingSink):
    gw = Gateway(TagFilter(), [sink])
    yield gw
    gw.close(timeout=2.0)


def test_decoded_measurement_is_stamped_and_forwarded(gateway: Gateway, sink: RecordingSink) -> None:
    measurement = gateway.handle_advertisement(_advertisement())

    assert measurement is not None
    assert measurement.mac == FORMAT_5_MAC
    assert measurement.rssi == -60
    assert measurement.timestamp == 1_700_000_000.0
    assert [point.mac for point in sink.writer.delivered] == [FORMAT_5_MAC]
    assert gateway.stats.forwarded == 1
    assert gateway.stats.per_format == {"5": 1}


def test_undecodable_payload_is_counted(gateway: Gateway, sink: RecordingSink) -> None:
    assert gateway.handle_advertisement(_advertisement(b"\x99\x04\x05")) is None

    assert gateway.stats.received == 1
    assert gateway.stats.decode_failures == 1
    assert sink.writer.attempts == []


def test_payload_without_address_uses_advertiser(gateway: Gateway, sink: RecordingSink) -> None:
    payload = encode(Measurement(data_format=DataFormat.FORMAT_6, temperature=20.0))

    measurement = gateway.handle_advertisement(_advertisement(payload, address="aa-bb-cc-dd-ee-ff"))

    assert measurement is not None
    assert measurement.mac == "AA:BB:CC:DD:EE:FF"
    assert gateway.stats.per_format == {"6": 1}


def test_filtered_tag_is_not_forwarded(sink: RecordingSink) -> None:
    gateway = Gateway(TagFilter(["11:22:33:44:55:66"]), [sink])
    try:
        assert gateway.handle_advertisement(_advertisement()) is None
        assert gateway.stats.filtered == 1
        assert gateway.stats.forwarded == 0
        assert sink.writer.attempts == []
    finally:
        gateway.close(timeout=2.0)


def test_tag_name_is_passed_to_sink(sink: RecordingSink) -> None:
    gateway = Gateway(TagFilter(), [sink], tag_names={FORMAT_5_MAC: "sauna"})
    try:
        gateway.handle_advertisement(_advertisement())
        assert sink.tag_names == ["sauna"]
    finally:
        gateway.close(timeout=2.0)


def test_minimum_interval_throttles_per_tag() -> None:
    clock = FakeClock()
    slow = RecordingSink("slow", minimum_interval=10.0)
    fast = RecordingSink("fast")
    gateway = Gateway(TagFilter(), [slow, fast], clock=clock)
    other = encode(Measurement(data_format=DataFormat.FORMAT_5, mac="11:22:33:44:55:66"))
    try:
        gateway.handle_advertisement(_advertisement())
        clock.now += 5.0
        gateway.handle_advertisement(_advertisement())
        gateway.handle_advertisement(_advertisement(other))
        clock.now += 5.0
        gateway.handle_advertisement(_advertisement())

        assert len(slow.writer.delivered) == 3
        assert [point.mac for point in slow.writer.delivered] == [
            FORMAT_5_MAC,
            "11:22:33:44:55:66",
            FORMAT_5_MAC,
        ]
        assert len(fast.writer.delivered) == 4
        assert gateway.stats.throttled == 1
    finally:
        gateway.close(timeout=2.0)


class FlakySerialiserSink(RecordingSink):
    """Sink whose first serialisation attempt is rejected."""

    def __init__(self) -> None:
        super().__init__("flaky", minimum_interval=10.0)
        self.rejections = 1

    def build_point(self, measurement: Measurement, *, tag_name: str | None = None):
        if self.rejections:
            self.rejections -= 1
            raise ValueError("field out of range")
        return super().build_point(measurement, tag_name=tag_name)


def test_rejected_point_does_not_start_throttle_window() -> None:
    clock = FakeClock()
    flaky = FlakySerialiserSink()
    gateway = Gateway(TagFilter(), [flaky], clock=clock)
    try:
        gateway.handle_advertisement(_advertisement())
        gateway.handle_advertisement(_advertisement())
        gateway.handle_advertisement(_advertisement())

        assert wait_for(lambda: len(flaky.writer.delivered) == 1)
        assert gateway.stats.throttled == 1
    finally:
        gateway.close(timeout=2.0)


def test_sink_failure_is_absorbed_by_buffer(gateway: Gateway, sink: RecordingSink) -> None:
    sink.writer.fail = True

    gateway.handle_advertisement(_advertisement())

    assert gateway.stats.forwarded == 1
    assert gateway.routes[0].buffer.pending == 1


def test_from_config_applies_buffer_and_filter_settings(sink: RecordingSink) -> None:
    sink.name = "mqtt"
    config = RuntimeConfig(
        enabled_tags=("11:22:33:44:55:66",),
        mqtt=MqttConfig(buffer=BufferConfig(max_size=7, retry_interval=5.0)),
    )
    gateway = Gateway.from_config(config, [sink])
    try:
        assert gateway.tag_filter.enabled_tags() == ["11:22:33:44:55:66"]
        assert gateway.routes[0].buffer.max_size == 7
        assert gateway.routes[0].buffer.base_retry_interval == 5.0
    finally:
        gateway.close(timeout=2.0)


def test_start_starts_sinks(gateway: Gateway, sink: RecordingSink) -> None:
    gateway.start()

    assert sink.started is True


@pytest.mark.asyncio
async def test_run_consumes_source_until_exhausted(gateway: Gateway, sink: RecordingSink) -> None:
    async def source() -> AsyncIterator[Advertisement]:
        for _ in range(3):
            yield _advertisement()
        yield _advertisement(b"garbage")

    await gateway.run(source())

    assert gateway.stats.received == 4
    assert gateway.stats.forwarded == 3
    assert gateway.stats.decode_failures == 1
    assert len(sink.writer.delivered) == 3


def test_snapshot_includes_sink_buffers(gateway: Gateway, sink: RecordingSink) -> None:
    sink.writer.fail = True
    gateway.handle_advertisement(_advertisement())

    snapshot = gateway.snapshot()

    assert snapshot["received"] == 1
    assert snapshot["forwarded"] == 1
    assert snapshot["enabled_tags"] == []
    assert snapshot["sinks"]["recording"]["pending"] == 1
    assert snapshot["sinks"]["recording"]["state"] == "running"


def test_close_stops_buffers_and_closes_sinks(sink: RecordingSink) -> None:
    gateway = Gateway(TagFilter(), [sink])

    gateway.close(timeout=2.0)
    gateway.close(timeout=2.0)

    assert sink.closed is True
    assert wait_for(lambda: not gateway.routes[0].buffer.running)


def test_matter_placeholder_holds_no_commissioning_data(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)
    bridge = MatterBridge(enabled=True)

    bridge.start()
    bridge.update_tag(Measurement(data_format=DataFormat.FORMAT_5))

    assert bridge.pairing_code() == ""
    assert bridge.qr_code() == ""
    assert any("external service" in record.getMessage() for record in caplog.records)
