"""Ruuvi manufacturer-data protocol: measurement model, layouts and decoder."""

from .decoder import Decoded, Rejected, encode, parse
from .measurement import DataFormat, Measurement, format_mac, normalise_mac

__all__ = [
    "DataFormat",
    "Decoded",
    "Measurement",
    "Rejected",
    "encode",
    "format_mac",
    "normalise_mac",
    "parse",
]
