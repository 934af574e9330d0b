"""Pytest configuration for Ruuvi bridge tests."""

from __future__ import annotations

from collections.abc import Iterator

import pytest
from helpers import RecordingWriter

from ruuvibridge.protocol import DataFormat, Measurement
from ruuvibridge.sinks import ResilientSink


@pytest.fixture
def writer() -> RecordingWriter:
    return RecordingWriter()


@pytest.fixture
def sinks_to_stop() -> Iterator[list[ResilientSink]]:
    """Collect ResilientSink instances and stop their threads after the test."""
    created: list[ResilientSink] = []
    yield created
    for sink in created:
        sink.stop()
        sink.join(timeout=2.0)


@pytest.fixture
def format5_measurement() -> Measurement:
    """The reference format 5 sample published by Ruuvi."""
    return Measurement(
        data_format=DataFormat.FORMAT_5,
        temperature=24.3,
        humidity=53.49,
        pressure=100044,
        acceleration_x=4,
        acceleration_y=-4,
        acceleration_z=1036,
        battery_voltage=2977,
        tx_power=4,
        movement_counter=66,
        measurement_sequence=205,
        mac="CB:B8:33:4C:88:4F",
    )
