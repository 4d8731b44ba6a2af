# src/ch_optimizer/cli.py
"""ch-optimizer Command Line Interface.

Entry point for the ch-optimizer daemon.

Exit statuses:
    0 - success (including dry runs and a stopped loop)
    1 - configuration or logging setup error
    2 - the one-shot cycle failed
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import typer
from pydantic import ValidationError

from ch_optimizer import __version__
from ch_optimizer.contracts.errors import StartupError
from ch_optimizer.core.config import (
    LOG_LEVELS,
    OptimizerSettings,
    find_config_file,
    load_settings,
    render_defaults,
    settings_to_dict,
)

__all__ = ["app"]

EXIT_STARTUP_ERROR = 1
EXIT_CYCLE_FAILED = 2

app = typer.Typer(
    name="ch-optimizer",
    help="Merge ClickHouse GraphiteMergeTree partitions that missed their rollup deadline.",
    add_completion=False,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(__version__)
        raise typer.Exit()


def _build_overrides(**flags: Any) -> dict[str, Any]:
    """Nest the command-line values that were actually given by section."""
    sections = {
        "server_dsn": "clickhouse",
        "optimize_interval": "clickhouse",
        "one_shot": "daemon",
        "loop_interval": "daemon",
        "dry_run": "daemon",
        "output": "logging",
        "level": "logging",
        "format": "logging",
    }
    overrides: dict[str, Any] = {}
    for key, value in flags.items():
        if value is not None:
            overrides.setdefault(sections[key], {})[key] = value
    return overrides


def _load(config: Path | None, overrides: dict[str, Any]) -> tuple[OptimizerSettings, Path | None]:
    """Resolve the config file and load settings, or exit 1 with a message."""
    config_path = config.expanduser() if config is not None else find_config_file()
    try:
        return load_settings(config_path, overrides), config_path
    except FileNotFoundError:
        typer.echo(f"Error: Config file not found: {config_path}", err=True)
        raise typer.Exit(EXIT_STARTUP_ERROR) from None
    except ValidationError as e:
        typer.echo("Configuration errors:", err=True)
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            typer.echo(f"  - {loc}: {error['msg']}", err=True)
        raise typer.Exit(EXIT_STARTUP_ERROR) from None
    except Exception as e:
        # Dynaconf surfaces TOML/YAML syntax errors with parser-specific types
        typer.echo(f"Failed to read config {config_path}: {e}", err=True)
        raise typer.Exit(EXIT_STARTUP_ERROR) from None


@app.command()
def main(
    config: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        help="Filename of the custom config. CLI arguments override it.",
    ),
    print_defaults: bool = typer.Option(
        False,
        "--print-defaults",
        help="Print default config values and exit.",
    ),
    version: bool | None = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Print version and exit.",
    ),
    server_dsn: str | None = typer.Option(
        None,
        "--server-dsn",
        "-s",
        help="DSN to connect to ClickHouse server.",
    ),
    optimize_interval: str | None = typer.Option(
        None,
        "--optimize-interval",
        help="The active partitions won't be optimized more than once per this interval (e.g. 72h).",
    ),
    one_shot: bool = typer.Option(
        False,
        "--one-shot",
        help="Make only one optimization round instead of working in the loop (implied by --dry-run).",
    ),
    loop_interval: str | None = typer.Option(
        None,
        "--loop-interval",
        help="Check for partitions to merge once per this interval (e.g. 1h).",
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        "-n",
        help="Print how many partitions would be merged without actions.",
    ),
    output: str | None = typer.Option(
        None,
        "--output",
        help="The logs file. '-' is accepted as STDOUT.",
    ),
    log_level: str | None = typer.Option(
        None,
        "--log-level",
        help=f"Valid options are: {', '.join(LOG_LEVELS)}.",
    ),
    log_format: str | None = typer.Option(
        None,
        "--log-format",
        help="Log renderer: 'console' or 'json'.",
    ),
) -> None:
    """Find partitions that missed their rollup deadline and OPTIMIZE them."""
    if print_defaults:
        typer.echo(render_defaults(), nl=False)
        raise typer.Exit()

    # Flags can only switch a mode on; absent flags leave the config value alone
    overrides = _build_overrides(
        server_dsn=server_dsn,
        optimize_interval=optimize_interval,
        one_shot=one_shot or None,
        loop_interval=loop_interval,
        dry_run=dry_run or None,
        output=output,
        level=log_level,
        format=log_format,
    )
    settings, config_path = _load(config, overrides)

    from ch_optimizer.core.logging import configure_logging, get_logger

    try:
        configure_logging(
            json_output=settings.logging.format == "json",
            level=settings.logging.level,
            output=settings.logging.output,
        )
    except StartupError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(EXIT_STARTUP_ERROR) from None

    logger = get_logger(__name__)
    if config_path is None:
        logger.debug("No config files were found, use defaults and flags")
    else:
        logger.debug("Config file loaded", path=str(config_path))
    logger.debug("The config is", config=settings_to_dict(settings, redact=True))

    result_ok = _run_daemon(settings)
    if not result_ok:
        raise typer.Exit(EXIT_CYCLE_FAILED)


def _run_daemon(settings: OptimizerSettings) -> bool:
    """Run the scheduler until it finishes or is stopped.

    Returns:
        False only when a one-shot cycle failed.
    """
    from sqlalchemy.exc import ArgumentError, NoSuchModuleError

    from ch_optimizer.core.database import ClickHouseConnector
    from ch_optimizer.engine.scheduler import Scheduler, shutdown_on_signals

    try:
        connector = ClickHouseConnector.from_dsn(settings.clickhouse.server_dsn)
    except (ArgumentError, NoSuchModuleError) as e:
        typer.echo(f"Error: Cannot use server DSN: {e}", err=True)
        raise typer.Exit(EXIT_STARTUP_ERROR) from None

    try:
        scheduler = Scheduler(settings, connector)
        with shutdown_on_signals(scheduler):
            result = scheduler.run()
    finally:
        connector.close()

    return result is None or result.succeeded
