"""Format detection and decoding of Ruuvi manufacturer data.

A scanned payload carries no external format tag, so candidate layouts are
tried in a fixed priority order (richest first). Each candidate checks the
vendor identifier, its format byte and its exact length before decoding; the
first one that succeeds wins. A payload matching no layout is an expected
outcome (most scanned frames come from unrelated devices) and is reported
through the return value, never raised.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, Final

import msgspec
from construct import ConstructError  # type: ignore

from ..util import log_payload
from . import formats
from .measurement import DataFormat, Measurement

logger = logging.getLogger("ruuvibridge.protocol.decoder")


class Decoded(msgspec.Struct, frozen=True, tag=True):
    measurement: Measurement


class Rejected(msgspec.Struct, frozen=True, tag=True):
    reason: str


FormatResult = Decoded | Rejected
FormatParser = Callable[[bytes], FormatResult]


def _parse_layout(
    raw: bytes,
    data_format: DataFormat,
    decode: Callable[[Any], Measurement],
) -> FormatResult:
    expected = formats.FORMAT_LENGTHS[data_format]
    if len(raw) != expected:
        return Rejected(f"format {data_format.label}: expected {expected} bytes, got {len(raw)}")
    if raw[:2] != formats.VENDOR_ID:
        return Rejected(f"format {data_format.label}: vendor identifier {raw[:2].hex()} is not 9904")
    if raw[2] != data_format.value:
        return Rejected(f"format {data_format.label}: format byte is 0x{raw[2]:02X}")
    try:
        container = formats.LAYOUTS[data_format].parse(raw)
    except ConstructError as exc:
        return Rejected(f"format {data_format.label}: {exc}")
    return Decoded(decode(container))


def parse_format_e1(raw: bytes) -> FormatResult:
    return _parse_layout(raw, DataFormat.FORMAT_E1, formats.decode_format_e1)


def parse_format_6(raw: bytes) -> FormatResult:
    return _parse_layout(raw, DataFormat.FORMAT_6, formats.decode_format_6)


def parse_format_5(raw: bytes) -> FormatResult:
    return _parse_layout(raw, DataFormat.FORMAT_5, formats.decode_format_5)


def parse_format_3(raw: bytes) -> FormatResult:
    return _parse_layout(raw, DataFormat.FORMAT_3, formats.decode_format_3)


PARSERS: Final[tuple[tuple[DataFormat, FormatParser], ...]] = (
    (DataFormat.FORMAT_E1, parse_format_e1),
    (DataFormat.FORMAT_6, parse_format_6),
    (DataFormat.FORMAT_5, parse_format_5),
    (DataFormat.FORMAT_3, parse_format_3),
)


def parse(raw: bytes | bytearray | memoryview) -> tuple[Measurement | None, bool]:
    """Decode *raw* manufacturer data.

    Returns ``(measurement, True)`` for the first layout that matches, or
    ``(None, False)`` when none does. Rejection reasons are only logged, at
    DEBUG level, when every layout fails.
    """
    data = bytes(raw)
    rejections: list[tuple[DataFormat, str]] = []
    for data_format, parser in PARSERS:
        result = parser(data)
        if isinstance(result, Decoded):
            return result.measurement, True
        rejections.append((data_format, result.reason))

    if logger.isEnabledFor(logging.DEBUG):
        log_payload(logger, logging.DEBUG, "Undecodable payload", data)
        logger.debug(
            "Failed to parse data",
            extra={f"format_{fmt.label.lower()}_error": reason for fmt, reason in rejections},
        )
    return None, False


_ENCODERS: Final[dict[DataFormat, Callable[[Measurement], dict[str, Any]]]] = {
    DataFormat.FORMAT_3: formats.encode_format_3,
    DataFormat.FORMAT_5: formats.encode_format_5,
    DataFormat.FORMAT_6: formats.encode_format_6,
    DataFormat.FORMAT_E1: formats.encode_format_e1,
}


def encode(measurement: Measurement, data_format: DataFormat | int | None = None) -> bytes:
    """Build the manufacturer-data payload for *measurement*.

    The layout defaults to the measurement's own ``data_format``. Fields that
    are ``None`` are written as the layout's "not available" marker.
    """
    try:
        target = DataFormat(measurement.data_format if data_format is None else data_format)
    except ValueError as exc:
        raise ValueError(f"Unsupported data format: {data_format!r}") from exc
    try:
        return formats.LAYOUTS[target].build(_ENCODERS[target](measurement))
    except ConstructError as exc:
        raise ValueError(f"Cannot encode measurement as format {target.label}: {exc}") from exc


__all__ = [
    "Decoded",
    "FormatResult",
    "PARSERS",
    "Rejected",
    "encode",
    "parse",
    "parse_format_3",
    "parse_format_5",
    "parse_format_6",
    "parse_format_e1",
]
