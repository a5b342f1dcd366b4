"""Unit tests for logging configuration and log sinks."""

from __future__ import annotations

import json
from collections.abc import Generator
from unittest.mock import MagicMock, call

import pytest
import structlog

from temporal_e2e.logs import StructlogSink, configure_logging


@pytest.fixture
def reset_structlog() -> Generator[None, None, None]:
    yield
    structlog.reset_defaults()


class TestStructlogSink:
    def test_each_line_becomes_an_event(self) -> None:
        logger = MagicMock()
        bound = logger.bind.return_value

        sink = StructlogSink("e2e/test-frontend-0:7233", logger=logger)
        written = sink.write("Forwarding from 127.0.0.1:50123 -> 7233\n\nHandling connection for 7233\n")

        logger.bind.assert_called_once_with(target="e2e/test-frontend-0:7233")
        assert bound.info.call_args_list == [
            call("port_forward", message="Forwarding from 127.0.0.1:50123 -> 7233"),
            call("port_forward", message="Handling connection for 7233"),
        ]
        assert written == len("Forwarding from 127.0.0.1:50123 -> 7233\n\nHandling connection for 7233\n")

    def test_blank_write_emits_nothing(self) -> None:
        logger = MagicMock()
        StructlogSink("t", logger=logger).write("   \n")
        logger.bind.return_value.info.assert_not_called()


@pytest.mark.usefixtures("reset_structlog")
class TestConfigureLogging:
    """Tests for configure_logging()."""

    def test_unknown_level(self) -> None:
        with pytest.raises(ValueError, match="Unknown log level: LOUD"):
            configure_logging(log_level="LOUD")

    def test_json_output(self, capsys: pytest.CaptureFixture[str]) -> None:
        configure_logging(log_level="INFO", json_output=True)

        structlog.get_logger("test").info("tunnel_ready", address="localhost:50123")

        event = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert event["event"] == "tunnel_ready"
        assert event["address"] == "localhost:50123"
        assert event["level"] == "info"
        assert "timestamp" in event

    def test_level_filtering(self, capsys: pytest.CaptureFixture[str]) -> None:
        configure_logging(log_level="warning", json_output=True)

        log = structlog.get_logger("test")
        log.info("condition_not_met")
        log.warning("tunnel_stop_timeout")

        lines = capsys.readouterr().out.strip().splitlines()
        assert [json.loads(line)["event"] for line in lines] == ["tunnel_stop_timeout"]
