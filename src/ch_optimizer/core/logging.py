# src/ch_optimizer/core/logging.py
"""Structured logging configuration for ch-optimizer.

Architecture:
    This module configures BOTH structlog and stdlib logging to emit
    consistent output (JSON or console). It uses ProcessorFormatter
    to route stdlib log records through structlog's processor chain,
    so driver loggers (clickhouse_driver, sqlalchemy) produce the same
    output format as modules using structlog.get_logger().
"""

import logging
import sys
from typing import Any

import structlog
from structlog.stdlib import ProcessorFormatter

from ch_optimizer.contracts.errors import StartupError

# Driver loggers that are excessively verbose at DEBUG level.
_NOISY_LOGGERS: tuple[str, ...] = (
    "clickhouse_driver",
    "clickhouse_driver.connection",
    "clickhouse_sqlalchemy",
    "sqlalchemy",
    "sqlalchemy.engine",
    "sqlalchemy.pool",
)

# Level names used by the daemon's config mapped onto stdlib levels.
# There is no TRACE in stdlib logging; it collapses into DEBUG.
_LEVELS: dict[str, int] = {
    "panic": logging.CRITICAL,
    "fatal": logging.CRITICAL,
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
    "trace": logging.DEBUG,
}


def parse_level(level: str) -> int:
    """Map a level name to a stdlib logging level.

    Raises:
        StartupError: If the name is unknown
    """
    try:
        return _LEVELS[level.strip().lower()]
    except KeyError:
        raise StartupError(f"Fail to parse log level: {level!r}") from None


def _remove_internal_fields(
    logger: logging.Logger | None,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Remove internal structlog fields from output.

    ProcessorFormatter ALWAYS adds _record and _from_structlog when processing
    log records. These are internal bookkeeping and should not appear in output.
    """
    del event_dict["_record"]
    del event_dict["_from_structlog"]
    return event_dict


def _open_handler(output: str) -> logging.Handler:
    if output == "-":
        return logging.StreamHandler(sys.stdout)
    try:
        return logging.FileHandler(output, mode="a", encoding="utf-8")
    except OSError as e:
        raise StartupError(f"Unable to open file {output} for writing: {e}") from e


def configure_logging(
    *,
    json_output: bool = False,
    level: str = "info",
    output: str = "-",
) -> None:
    """Configure structlog and stdlib logging for ch-optimizer.

    Args:
        json_output: If True, output JSON. If False, human-readable.
        level: Log level name (see parse_level).
        output: Log file path to append to, or "-" for stdout.

    Raises:
        StartupError: If the level is unknown or the output can't be opened.
    """
    log_level = parse_level(level)
    handler = _open_handler(output)

    # Shared processors applied to ALL log records (structlog and stdlib)
    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
    ]

    if json_output:
        final_processors: list[Any] = [
            _remove_internal_fields,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        # Colors only make sense on a terminal
        colors = output == "-" and sys.stdout.isatty()
        final_processors = [
            _remove_internal_fields,
            structlog.dev.ConsoleRenderer(colors=colors),
        ]

    structlog.configure(
        processors=[*shared_processors, ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        # Disable caching to allow reconfiguration in tests
        cache_logger_on_first_use=False,
    )

    handler.setFormatter(
        ProcessorFormatter(
            processors=final_processors,
            foreign_pre_chain=shared_processors,
        )
    )

    # Replace root logger handlers
    root = logging.getLogger()
    root.handlers = []
    root.addHandler(handler)
    root.setLevel(log_level)

    # Never make noisy loggers less restrictive than the configured root level.
    noisy_level = max(log_level, logging.WARNING)
    for logger_name in _NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(noisy_level)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a bound logger for a module.

    Args:
        name: Logger name (typically __name__).

    Returns:
        Bound structlog logger.
    """
    logger: structlog.stdlib.BoundLogger = structlog.get_logger(name)
    return logger
