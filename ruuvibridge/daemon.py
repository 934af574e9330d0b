#!/usr/bin/env python3
"""Async orchestrator for the Ruuvi bridge daemon.

Architecture:
    main() -> BridgeDaemon -> TaskGroup
        ├── ingest (Gateway.run over the advertisement source)
        ├── prometheus-exporter (optional)
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections.abc import AsyncIterable
from typing import NoReturn

import uvloop

from . import __version__
from .config.logging import configure_logging
from .config.settings import ConfigError, RuntimeConfig, load_runtime_config
from .const import DEFAULT_CONFIG_PATH, SUPERVISOR_DEFAULT_RESTART_INTERVAL
from .gateway import Gateway
from .metrics import PrometheusExporter
from .scanner import Advertisement, MockScanner, StreamScanner
from .sinks import Sink, create_sinks
from .supervisor import SupervisedTaskSpec, supervise_task

logger = logging.getLogger("ruuvibridge")


class BridgeDaemon:
    """Own the gateway, its sinks and the supervised tasks around them."""

    def __init__(self, config: RuntimeConfig, sinks: list[Sink] | None = None) -> None:
        self.config = config
        self.gateway = Gateway.from_config(config, sinks if sinks is not None else create_sinks(config))
        self.exporter: PrometheusExporter | None = None

    async def _open_source(self) -> AsyncIterable[Advertisement]:
        if self.config.use_mock:
            return MockScanner(interval=self.config.mock_interval)
        logger.info("Reading advertisements from stdin")
        return await StreamScanner.from_stdin()

    async def _run_ingest(self) -> None:
        source = await self._open_source()
        await self.gateway.run(source)

    def _ingest_spec(self) -> SupervisedTaskSpec:
        # stdin cannot be reopened, so a failed stream is not restarted.
        return SupervisedTaskSpec(
            name="ingest",
            factory=self._run_ingest,
            max_restarts=None if self.config.use_mock else 0,
        )

    def _setup_supervision(self) -> list[SupervisedTaskSpec]:
        """Auxiliary tasks that live as long as ingestion does."""
        specs: list[SupervisedTaskSpec] = []
        if self.config.metrics.enabled:
            self.exporter = PrometheusExporter(
                self.gateway.snapshot,
                self.config.metrics.host,
                self.config.metrics.port,
            )
            specs.append(
                SupervisedTaskSpec(
                    name="prometheus-exporter",
                    factory=self.exporter.run,
                    max_restarts=5,
                    restart_interval=SUPERVISOR_DEFAULT_RESTART_INTERVAL,
                )
            )
        return specs

    async def run(self) -> None:
        """Main async entry point."""
        supervised_tasks = self._setup_supervision()
        self.gateway.start()
        try:
            async with asyncio.TaskGroup() as task_group:
                auxiliary = [task_group.create_task(supervise_task(spec)) for spec in supervised_tasks]
                await supervise_task(self._ingest_spec())
                logger.info("Advertisement source ended; stopping.")
                for task in auxiliary:
                    task.cancel()
        except* asyncio.CancelledError:
            logger.info("Main task cancelled; shutting down.")
        except* Exception as exc_group:
            for group_exc in exc_group.exceptions:
                logger.critical(
                    "Unhandled exception in main task group: %s",
                    group_exc,
                    exc_info=group_exc,
                )
            raise
        finally:
            await asyncio.to_thread(self.gateway.close)
            logger.info("Ruuvi bridge daemon stopped.", extra={"sinks": self.gateway.snapshot()["sinks"]})


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ruuvibridge", description="Ruuvi BLE sensor gateway")
    parser.add_argument(
        "--config",
        default=DEFAULT_CONFIG_PATH,
        help="The path to the configuration (default: %(default)s)",
    )
    parser.add_argument(
        "--strict-config",
        action="store_true",
        help="Reject unknown keys in the configuration file",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv: list[str] | None = None) -> NoReturn:  # pragma: no cover (Entry point wrapper)
    args = build_parser().parse_args(argv)

    try:
        config = load_runtime_config(args.config, strict=args.strict_config)
    except ConfigError as exc:
        logging.basicConfig(level=logging.INFO)
        logger.critical("Failed to load config: %s", exc)
        sys.exit(1)

    configure_logging(config)
    logger.info(
        "Starting Ruuvi bridge %s (config=%s, mock=%s)",
        __version__,
        args.config,
        config.use_mock,
    )

    try:
        daemon = BridgeDaemon(config)
        asyncio.run(daemon.run(), loop_factory=uvloop.new_event_loop)
        sys.exit(0)
    except KeyboardInterrupt:
        logger.info("Daemon interrupted by user.")
        sys.exit(0)
    except ExceptionGroup as exc_group:
        for group_exc in exc_group.exceptions:
            logger.critical("Fatal error in task group: %s", group_exc, exc_info=group_exc)
        sys.exit(1)
    except OSError as exc:
        logger.critical("System/OS error during daemon execution: %s", exc, exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
