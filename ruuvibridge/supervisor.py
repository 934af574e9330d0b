"""Asyncio task supervision helpers for the Ruuvi bridge."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

import msgspec
import tenacity

from .const import (
    SUPERVISOR_DEFAULT_MAX_BACKOFF,
    SUPERVISOR_DEFAULT_MIN_BACKOFF,
    SUPERVISOR_DEFAULT_RESTART_INTERVAL,
    SUPERVISOR_MIN_RESTART_WINDOW,
)


class SupervisedTaskSpec(msgspec.Struct):
    """Specification for a supervised async task."""

    name: str
    factory: Callable[[], Awaitable[None]]
    fatal_exceptions: tuple[type[BaseException], ...] = ()
    max_restarts: int | None = None
    restart_interval: float = SUPERVISOR_DEFAULT_RESTART_INTERVAL
    min_backoff: float = SUPERVISOR_DEFAULT_MIN_BACKOFF
    max_backoff: float = SUPERVISOR_DEFAULT_MAX_BACKOFF


class _SupervisorRetryState:
    """Track task health and logging across tenacity retries."""

    def __init__(self, name: str, log: logging.Logger, window: float) -> None:
        self.name = name
        self.log = log
        self.window = window
        self.last_start_time = 0.0
        self.failures = 0

    def mark_started(self) -> None:
        self.last_start_time = time.monotonic()

    def is_healthy_runtime(self) -> bool:
        if self.last_start_time <= 0:
            return False
        return (time.monotonic() - self.last_start_time) > self.window

    def before_sleep(self, retry_state: tenacity.RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        self.log.error("%s failed (%s); restarting in %.1fs", self.name, exc, delay)

    def after(self, retry_state: tenacity.RetryCallState) -> None:
        if retry_state.outcome is not None and retry_state.outcome.failed:
            self.failures += 1


async def supervise_task(spec: SupervisedTaskSpec, *, logger: logging.Logger | None = None) -> None:
    """Run ``spec.factory`` restarting it on failures using tenacity."""
    log = logger or logging.getLogger("ruuvibridge.supervisor")
    helper = _SupervisorRetryState(
        spec.name, log, max(SUPERVISOR_MIN_RESTART_WINDOW, spec.restart_interval)
    )

    retryer = tenacity.AsyncRetrying(
        wait=tenacity.wait_exponential(multiplier=spec.min_backoff, max=spec.max_backoff),
        retry=tenacity.retry_if_not_exception_type(
            (asyncio.CancelledError, SystemExit, KeyboardInterrupt, GeneratorExit) + spec.fatal_exceptions
        ),
        stop=(
            tenacity.stop_after_attempt(spec.max_restarts + 1)
            if spec.max_restarts is not None
            else tenacity.stop_never
        ),
        before_sleep=helper.before_sleep,
        after=helper.after,
        reraise=True,
    )

    try:
        while True:
            try:
                async for attempt in retryer:
                    with attempt:
                        helper.mark_started()
                        await spec.factory()
                        log.warning("%s task exited cleanly; supervisor exiting", spec.name)
                        return
            except spec.fatal_exceptions as exc:
                log.critical("%s failed with fatal exception: %s", spec.name, exc)
                raise
            except Exception:
                if helper.is_healthy_runtime():
                    log.info("%s was healthy long enough; resetting backoff", spec.name)
                    continue
                if spec.max_restarts is not None:
                    log.error("%s exceeded max restarts (%d); giving up", spec.name, spec.max_restarts)
                raise
    except asyncio.CancelledError:
        log.debug("%s supervisor cancelled", spec.name)
        raise


__all__ = ["SupervisedTaskSpec", "supervise_task"]
