"""Shared sink types: buffered delivery units and the sink protocol."""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any, Protocol

import msgspec

from ..protocol.measurement import Measurement


class BufferedPoint(msgspec.Struct, frozen=True):
    """An already-serialized point awaiting delivery.

    ``data`` is sink specific and opaque to the delivery buffer; ``timestamp``
    is the UNIX time the point was first accepted for delivery.
    """

    data: Any
    timestamp: float = msgspec.field(default_factory=time.time)


WriteFn = Callable[[BufferedPoint], None]


class SinkError(RuntimeError):
    """Raised by a sink when a point could not be delivered."""

    def __init__(self, sink: str, reason: str) -> None:
        super().__init__(f"{sink}: {reason}")
        self.sink = sink
        self.reason = reason


class Sink(Protocol):
    """A downstream destination for measurements."""

    name: str
    minimum_interval: float

    def start(self) -> None: ...

    def build_point(self, measurement: Measurement, *, tag_name: str | None = None) -> BufferedPoint: ...

    def write_point(self, point: BufferedPoint) -> None: ...

    def close(self) -> None: ...


__all__ = ["BufferedPoint", "Sink", "SinkError", "WriteFn"]
