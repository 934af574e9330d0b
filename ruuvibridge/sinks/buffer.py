"""Bounded in-memory delivery buffer with background retry.

Each :class:`ResilientSink` wraps one synchronous write operation. A write is
attempted inline exactly once; on failure the point is queued and a dedicated
retry thread replays the queue, oldest first, with exponential backoff. The
queue never grows past ``max_size``: the oldest point is evicted and counted.

Nothing is persisted. Points still queued when the sink stops are discarded.
"""

from __future__ import annotations

import collections
import logging
import threading
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from transitions import Machine

from ..config.model import BufferConfig
from ..const import (
    BUFFER_STATS_LOG_INTERVAL,
    DEFAULT_BUFFER_MAX_SIZE,
    DEFAULT_RETRY_INTERVAL,
    MAX_RETRY_INTERVAL,
)
from .base import BufferedPoint, WriteFn


class ResilientSink:
    """Absorb sink outages behind a FIFO retry queue."""

    if TYPE_CHECKING:
        fsm_state: str
        shutdown: Callable[[], bool]

    STATE_RUNNING = "running"
    STATE_STOPPED = "stopped"

    def __init__(
        self,
        name: str,
        config: BufferConfig | None,
        write_fn: WriteFn,
        *,
        max_retry_interval: float = MAX_RETRY_INTERVAL,
        stats_interval: float = BUFFER_STATS_LOG_INTERVAL,
        logger: logging.Logger | None = None,
    ) -> None:
        config = config or BufferConfig()
        self.name = name
        self._write_fn = write_fn
        self._max_size = config.max_size if config.max_size > 0 else DEFAULT_BUFFER_MAX_SIZE
        self._base_retry_interval = (
            config.retry_interval if config.retry_interval > 0 else DEFAULT_RETRY_INTERVAL
        )
        self._max_retry_interval = max(max_retry_interval, self._base_retry_interval)
        self._retry_interval = self._base_retry_interval
        self._stats_interval = stats_interval
        self._logger = logger or logging.getLogger(f"ruuvibridge.sinks.buffer.{name}")

        self._lock = threading.Lock()
        self._queue: collections.deque[tuple[int, BufferedPoint]] = collections.deque()
        self._next_seq = 0
        self._dropped = 0
        self._overflowing = False
        self._stop_event = threading.Event()

        self.state_machine = Machine(
            model=self,
            states=[self.STATE_RUNNING, self.STATE_STOPPED],
            initial=self.STATE_RUNNING,
            ignore_invalid_triggers=True,
            model_attribute="fsm_state",
        )
        self.state_machine.add_transition(
            trigger="shutdown", source=self.STATE_RUNNING, dest=self.STATE_STOPPED
        )

        self._thread = threading.Thread(
            target=self._retry_loop,
            name=f"ruuvibridge-retry-{name}",
            daemon=True,
        )
        self._thread.start()

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._queue)

    @property
    def dropped(self) -> int:
        with self._lock:
            return self._dropped

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def base_retry_interval(self) -> float:
        return self._base_retry_interval

    @property
    def retry_interval(self) -> float:
        return self._retry_interval

    @property
    def running(self) -> bool:
        return self.fsm_state == self.STATE_RUNNING

    def write(self, point: BufferedPoint) -> None:
        """Deliver *point* now, or queue it for retry. Never raises."""
        try:
            self._write_fn(point)
        except Exception as exc:
            self._logger.debug("%s write failed, buffering point: %s", self.name, exc)
            self._enqueue(point)

    def stop(self) -> None:
        """Stop the retry thread; queued points are discarded. Idempotent."""
        with self._lock:
            if self.fsm_state == self.STATE_STOPPED:
                return
            self.shutdown()
            discarded = len(self._queue)
        self._stop_event.set()
        if discarded:
            self._logger.warning(
                "%s stopped with %d buffered point(s) undelivered", self.name, discarded
            )
        else:
            self._logger.debug("%s stopped", self.name)

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the retry thread to exit; return ``True`` if it did."""
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            pending = len(self._queue)
            oldest = self._queue[0][1].timestamp if self._queue else None
            dropped = self._dropped
        return {
            "name": self.name,
            "state": self.fsm_state,
            "pending": pending,
            "dropped": dropped,
            "max_size": self._max_size,
            "retry_interval": self._retry_interval,
            "base_retry_interval": self._base_retry_interval,
            "oldest_timestamp": oldest,
        }

    def _enqueue(self, point: BufferedPoint) -> None:
        evicted = False
        with self._lock:
            if len(self._queue) >= self._max_size:
                self._queue.popleft()
                self._dropped += 1
                evicted = not self._overflowing
                self._overflowing = True
            self._queue.append((self._next_seq, point))
            self._next_seq += 1
            dropped = self._dropped
        if evicted:
            self._logger.warning(
                "%s buffer full (%d points); dropping oldest (dropped=%d)",
                self.name,
                self._max_size,
                dropped,
            )

    def _discard_through(self, seq: int) -> None:
        # Evictions only ever remove from the left, so every entry whose
        # sequence is <= seq was either written or already evicted.
        with self._lock:
            while self._queue and self._queue[0][0] <= seq:
                self._queue.popleft()
            if not self._queue:
                self._overflowing = False

    def _flush(self) -> bool:
        with self._lock:
            snapshot = list(self._queue)

        written_through: int | None = None
        written = 0
        complete = True
        for seq, point in snapshot:
            if self._stop_event.is_set():
                complete = False
                break
            try:
                self._write_fn(point)
            except Exception as exc:
                self._logger.debug(
                    "%s retry failed after %d point(s): %s", self.name, written, exc
                )
                complete = False
                break
            written_through = seq
            written += 1

        if written_through is not None:
            self._discard_through(written_through)
        if written:
            self._logger.info("%s flushed %d buffered point(s)", self.name, written)
        return complete

    def _retry_loop(self) -> None:
        last_stats = time.monotonic()
        while not self._stop_event.wait(self._retry_interval):
            with self._lock:
                pending = len(self._queue)
                dropped = self._dropped
            if not pending:
                self._retry_interval = self._base_retry_interval
                continue

            now = time.monotonic()
            if now - last_stats >= self._stats_interval:
                self._logger.info(
                    "%s buffer status: pending=%d dropped=%d", self.name, pending, dropped
                )
                last_stats = now

            if self._flush():
                self._retry_interval = self._base_retry_interval
            else:
                self._retry_interval = min(self._retry_interval * 2, self._max_retry_interval)
                self._logger.debug(
                    "%s backing off; next retry in %.1fs", self.name, self._retry_interval
                )
        self._logger.debug("%s retry loop exited", self.name)


__all__ = ["ResilientSink"]
