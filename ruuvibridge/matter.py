"""Matter bridging stub; bridging itself is done by an external service."""

from __future__ import annotations

import logging

from .protocol.measurement import Measurement

logger = logging.getLogger("ruuvibridge.matter")


class MatterBridge:
    def __init__(self, enabled: bool = False) -> None:
        self.enabled = enabled

    def start(self) -> None:
        if self.enabled:
            logger.info("Internal Matter stub initialized; bridging is handled by external service.")

    def update_tag(self, measurement: Measurement) -> None:
        return None

    def pairing_code(self) -> str:
        return ""

    def qr_code(self) -> str:
        return ""


__all__ = ["MatterBridge"]
