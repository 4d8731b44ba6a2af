# tests/core/test_logging.py
"""Tests for structured logging configuration."""

import json
import logging
from pathlib import Path

import pytest

from ch_optimizer.contracts.errors import StartupError


class TestParseLevel:
    @pytest.mark.parametrize(
        ("name", "expected"),
        [
            ("panic", logging.CRITICAL),
            ("fatal", logging.CRITICAL),
            ("error", logging.ERROR),
            ("warn", logging.WARNING),
            ("WARNING", logging.WARNING),
            ("info", logging.INFO),
            ("debug", logging.DEBUG),
            ("trace", logging.DEBUG),
        ],
    )
    def test_known_levels(self, name: str, expected: int) -> None:
        from ch_optimizer.core.logging import parse_level

        assert parse_level(name) == expected

    def test_unknown_level(self) -> None:
        from ch_optimizer.core.logging import parse_level

        with pytest.raises(StartupError, match="Fail to parse log level"):
            parse_level("verbose")


class TestLoggingConfig:
    """Tests for logging configuration."""

    def test_get_logger_returns_logger(self) -> None:
        """get_logger returns a bound logger."""
        from ch_optimizer.core.logging import get_logger

        logger = get_logger("test")
        assert hasattr(logger, "info")
        assert hasattr(logger, "error")
        assert hasattr(logger, "bind")

    def test_logger_outputs_structured(self, capsys: pytest.CaptureFixture[str]) -> None:
        """Logger outputs structured JSON."""
        from ch_optimizer.core.logging import configure_logging, get_logger

        configure_logging(json_output=True)
        logger = get_logger("test")

        logger.info("test message", key="value")

        captured = capsys.readouterr()
        log_line = captured.out.strip().split("\n")[-1]
        data = json.loads(log_line)
        assert data["event"] == "test message"
        assert data["key"] == "value"
        assert data["level"] == "info"
        assert "_record" not in data

    def test_logger_console_output(self, capsys: pytest.CaptureFixture[str]) -> None:
        """Logger outputs human-readable in console mode."""
        from ch_optimizer.core.logging import configure_logging, get_logger

        configure_logging(json_output=False)
        logger = get_logger("test")

        logger.info("test message", key="value")

        captured = capsys.readouterr()
        assert "test message" in captured.out
        assert not captured.out.strip().startswith("{")

    def test_level_filters(self, capsys: pytest.CaptureFixture[str]) -> None:
        from ch_optimizer.core.logging import configure_logging, get_logger

        configure_logging(json_output=True, level="warn")
        logger = get_logger("test")

        logger.info("hidden")
        logger.warning("shown")

        out = capsys.readouterr().out
        assert "hidden" not in out
        assert "shown" in out

    def test_trace_enables_debug(self, capsys: pytest.CaptureFixture[str]) -> None:
        from ch_optimizer.core.logging import configure_logging, get_logger

        configure_logging(json_output=True, level="trace")
        get_logger("test").debug("debug detail")

        assert "debug detail" in capsys.readouterr().out

    def test_output_file_appended(self, tmp_path: Path) -> None:
        from ch_optimizer.core.logging import configure_logging, get_logger

        log_file = tmp_path / "optimizer.log"
        log_file.write_text("existing line\n")

        configure_logging(json_output=True, output=str(log_file))
        get_logger("test").info("to file")
        for handler in logging.getLogger().handlers:
            handler.flush()

        lines = log_file.read_text().splitlines()
        assert lines[0] == "existing line"
        assert json.loads(lines[-1])["event"] == "to file"

    def test_unwritable_output_is_startup_error(self, tmp_path: Path) -> None:
        from ch_optimizer.core.logging import configure_logging

        with pytest.raises(StartupError, match="Unable to open file"):
            configure_logging(output=str(tmp_path / "missing-dir" / "optimizer.log"))

    def test_noisy_driver_loggers_silenced(self) -> None:
        """Driver loggers stay at WARNING even when the daemon runs in debug."""
        from ch_optimizer.core.logging import configure_logging

        configure_logging(level="debug")

        assert logging.getLogger().level == logging.DEBUG
        for name in ["clickhouse_driver", "clickhouse_driver.connection", "sqlalchemy.engine", "sqlalchemy.pool"]:
            logger = logging.getLogger(name)
            assert logger.getEffectiveLevel() >= logging.WARNING, (
                f"Logger '{name}' should be WARNING or higher, got level {logger.getEffectiveLevel()}"
            )

    def test_stdlib_loggers_emit_json_when_json_output_enabled(self, capsys: pytest.CaptureFixture[str]) -> None:
        """stdlib loggers (the drivers) go through the same JSON renderer."""
        from ch_optimizer.core.logging import configure_logging

        configure_logging(json_output=True)

        stdlib_logger = logging.getLogger("test.stdlib.module")
        stdlib_logger.info("message from stdlib logger")

        captured = capsys.readouterr()
        log_line = captured.out.strip().split("\n")[-1]

        data = json.loads(log_line)
        assert data["event"] == "message from stdlib logger"
        assert "level" in data
        assert "timestamp" in data
