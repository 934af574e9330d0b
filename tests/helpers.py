"""Test doubles shared across the Ruuvi bridge tests."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable

from ruuvibridge.protocol import Measurement
from ruuvibridge.sinks import BufferedPoint


def wait_for(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.01) -> bool:
    """Poll *predicate* until it holds or *timeout* elapses."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


class RecordingWriter:
    """Write operation whose failure mode can be flipped from the test."""

    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.failing: set[object] = set()
        self.attempts: list[object] = []
        self.delivered: list[object] = []
        self._lock = threading.Lock()

    def __call__(self, point: BufferedPoint) -> None:
        with self._lock:
            self.attempts.append(point.data)
            if self.fail or point.data in self.failing:
                raise ConnectionError(f"sink unavailable for {point.data!r}")
            self.delivered.append(point.data)


class RecordingSink:
    """In-memory sink double implementing the sink protocol."""

    def __init__(self, name: str = "recording", *, minimum_interval: float = 0.0) -> None:
        self.name = name
        self.minimum_interval = minimum_interval
        self.writer = RecordingWriter()
        self.started = False
        self.closed = False
        self.tag_names: list[str | None] = []

    def start(self) -> None:
        self.started = True

    def build_point(self, measurement: Measurement, *, tag_name: str | None = None) -> BufferedPoint:
        self.tag_names.append(tag_name)
        return BufferedPoint(data=measurement)

    def write_point(self, point: BufferedPoint) -> None:
        self.writer(point)

    def close(self) -> None:
        self.closed = True
