"""Allowlist of tag addresses consulted before measurements are forwarded."""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable

from .protocol.measurement import normalise_mac

logger = logging.getLogger("ruuvibridge.filter")


class TagFilter:
    """Thread-safe address allowlist.

    An empty allowlist lets every tag through. Addresses compare
    case-insensitively in any common separator style.
    """

    def __init__(self, tags: Iterable[str] = ()) -> None:
        self._lock = threading.RLock()
        self._tags: frozenset[str] = frozenset()
        self.update(tags)

    def update(self, tags: Iterable[str]) -> None:
        normalised = frozenset(normalise_mac(tag) for tag in tags if tag.strip())
        with self._lock:
            self._tags = normalised
        if normalised:
            logger.info("Tag allowlist set to %d address(es)", len(normalised))
        else:
            logger.info("Tag allowlist empty; all tags enabled")

    def is_enabled(self, mac: str) -> bool:
        with self._lock:
            if not self._tags:
                return True
            return normalise_mac(mac) in self._tags

    def enabled_tags(self) -> list[str]:
        with self._lock:
            return sorted(self._tags)

    @property
    def allow_all(self) -> bool:
        with self._lock:
            return not self._tags


__all__ = ["TagFilter"]
