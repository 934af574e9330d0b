"""Ruuvi Bridge package initialisation."""

__version__ = "1.0.0"

import logging
import sys

logger = logging.getLogger(__name__)


def _check_dependencies():
    """Fail fast on a paho-mqtt without the v2 callback API."""
    try:
        import paho.mqtt.client as mqtt

        if not hasattr(mqtt, "CallbackAPIVersion"):
            logger.critical(
                "FATAL: Incompatible paho-mqtt version detected. "
                "This bridge requires paho-mqtt 2.x with CallbackAPIVersion support."
            )
            sys.exit(1)

    except ImportError:
        # A missing paho surfaces as ImportError when the MQTT sink is imported.
        pass


_check_dependencies()
