"""Tests for the daemon entry point and task orchestration."""

from __future__ import annotations

import random
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
from helpers import RecordingSink

from ruuvibridge import __version__
from ruuvibridge.config.model import MetricsConfig, RuntimeConfig
from ruuvibridge.const import DEFAULT_CONFIG_PATH
from ruuvibridge.daemon import BridgeDaemon, build_parser, main
from ruuvibridge.scanner import MockScanner


def _limited_scanner(*args, **kwargs) -> MockScanner:
    return MockScanner(interval=0.0, rng=random.Random(1), limit=2)


def test_parser_defaults() -> None:
    args = build_parser().parse_args([])

    assert args.config == DEFAULT_CONFIG_PATH
    assert args.strict_config is False


def test_parser_options() -> None:
    args = build_parser().parse_args(["--config", "/etc/ruuvi.toml", "--strict-config"])

    assert args.config == "/etc/ruuvi.toml"
    assert args.strict_config is True


def test_parser_version(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as excinfo:
        build_parser().parse_args(["--version"])

    assert excinfo.value.code == 0
    assert __version__ in capsys.readouterr().out


@pytest.mark.asyncio
async def test_daemon_forwards_mock_advertisements_until_source_ends() -> None:
    sink = RecordingSink("mqtt")
    daemon = BridgeDaemon(RuntimeConfig(use_mock=True), sinks=[sink])

    with patch("ruuvibridge.daemon.MockScanner", side_effect=_limited_scanner):
        await daemon.run()

    assert sink.started is True
    assert sink.closed is True
    assert len(sink.writer.delivered) == 4
    assert daemon.gateway.stats.forwarded == 4
    assert not daemon.gateway.routes[0].buffer.running


@pytest.mark.asyncio
async def test_daemon_starts_and_cancels_metrics_exporter() -> None:
    config = RuntimeConfig(use_mock=True, metrics=MetricsConfig(enabled=True, port=0))
    daemon = BridgeDaemon(config, sinks=[RecordingSink("mqtt")])

    with patch("ruuvibridge.daemon.MockScanner", side_effect=_limited_scanner):
        await daemon.run()

    assert daemon.exporter is not None
    assert daemon.exporter._server is None


@pytest.mark.asyncio
async def test_stdin_failure_is_not_restarted() -> None:
    sink = RecordingSink("mqtt")
    daemon = BridgeDaemon(RuntimeConfig(use_mock=False), sinks=[sink])
    opener = MagicMock(side_effect=OSError("stdin is not a pipe"))

    with patch("ruuvibridge.daemon.StreamScanner.from_stdin", opener):
        with pytest.raises(ExceptionGroup) as excinfo:
            await daemon.run()

    assert opener.call_count == 1
    assert isinstance(excinfo.value.exceptions[0], OSError)
    assert sink.closed is True


def test_main_exits_on_config_error(tmp_path: Path) -> None:
    bad = tmp_path / "config.toml"
    bad.write_text("[mqtt]\nport = 0\n", encoding="utf-8")

    with patch("ruuvibridge.daemon.configure_logging") as configure:
        with pytest.raises(SystemExit) as excinfo:
            main(["--config", str(bad)])

    assert excinfo.value.code == 1
    configure.assert_not_called()


@pytest.mark.parametrize(
    ("side_effect", "code"),
    [
        (None, 0),
        (KeyboardInterrupt(), 0),
        (ExceptionGroup("boom", [RuntimeError("x")]), 1),
        (OSError("disk"), 1),
    ],
)
def test_main_exit_codes(tmp_path: Path, side_effect: BaseException | None, code: int) -> None:
    config_path = tmp_path / "config.toml"
    config_path.write_text("use_mock = true\n", encoding="utf-8")

    with (
        patch("ruuvibridge.daemon.configure_logging") as configure,
        patch("ruuvibridge.daemon.BridgeDaemon") as daemon_cls,
        patch("ruuvibridge.daemon.asyncio.run", side_effect=side_effect) as run,
    ):
        with pytest.raises(SystemExit) as excinfo:
            main(["--config", str(config_path)])

    assert excinfo.value.code == code
    configure.assert_called_once()
    assert daemon_cls.call_args[0][0].use_mock is True
    run.assert_called_once()
