# src/ch_optimizer/core/config.py
"""
Configuration schema and loading for ch-optimizer.

Uses Pydantic for validation and Dynaconf for multi-source loading.
Settings are frozen (immutable) after construction and passed explicitly
into the scheduler - there is no module-level configuration state.
"""

import os
import re
from datetime import timedelta
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from sqlalchemy.engine.url import make_url
from sqlalchemy.exc import ArgumentError

APP_NAME = "ch-optimizer"
ENVVAR_PREFIX = "CH_OPTIMIZER"

DEFAULT_SERVER_DSN = "clickhouse+native://localhost:9000/default?optimize_throw_if_noop=1&send_receive_timeout=3600"

# Config file names probed in each search directory, in order
_CONFIG_FILE_NAMES: tuple[str, ...] = ("config.toml", "config.yaml", "config.yml")

# Log level names accepted on the command line and in config files
LOG_LEVELS: tuple[str, ...] = ("panic", "fatal", "error", "warn", "warning", "info", "debug", "trace")

# Go-style durations: "72h", "1h30m", "1.5s", "500ms"
_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ns|us|µs|ms|s|m|h)")
_DURATION_FULL = re.compile(r"^(?:\d+(?:\.\d+)?(?:ns|us|µs|ms|s|m|h))+$")
_SECONDS = re.compile(r"^\d+(?:\.\d+)?$")
_DURATION_UNITS: dict[str, float] = {
    "ns": 1e-9,
    "us": 1e-6,
    "µs": 1e-6,
    "ms": 1e-3,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
}


def parse_duration(value: str) -> timedelta:
    """Parse a Go-style duration string ("72h", "1h30m", "250ms").

    Raises:
        ValueError: If the string is not a valid duration
    """
    text = value.strip()
    if not _DURATION_FULL.match(text):
        raise ValueError(f"invalid duration {value!r}")
    seconds = sum(float(number) * _DURATION_UNITS[unit] for number, unit in _DURATION_PART.findall(text))
    return timedelta(seconds=seconds)


def format_duration(value: timedelta) -> str:
    """Render a timedelta the way parse_duration reads it ("72h", "1h30m", "0s")."""
    total = value.total_seconds()
    if total == 0:
        return "0s"
    hours, rest = divmod(int(total), 3600)
    minutes, seconds = divmod(rest, 60)
    fraction = total - int(total)
    parts = []
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if seconds or fraction:
        parts.append(f"{seconds + fraction:g}s")
    return "".join(parts)


def _coerce_duration(value: Any) -> Any:
    """Accept Go-style and bare-seconds strings in addition to what Pydantic parses natively."""
    if isinstance(value, str):
        stripped = value.strip()
        if _DURATION_FULL.match(stripped):
            return parse_duration(stripped)
        if _SECONDS.match(stripped):
            return timedelta(seconds=float(stripped))
    return value


def _require_positive(value: timedelta) -> timedelta:
    if value <= timedelta(0):
        raise ValueError("duration must be positive")
    return value


class ClickHouseSettings(BaseModel):
    """ClickHouse connection and merge spacing configuration."""

    model_config = {"frozen": True}

    # NOTE: str rather than a URL type - the DSN is handed to SQLAlchemy as-is
    server_dsn: str = Field(
        default=DEFAULT_SERVER_DSN,
        description="SQLAlchemy URL of the ClickHouse server (native protocol)",
    )
    optimize_interval: timedelta = Field(
        default=timedelta(hours=72),
        description="Partitions merged more recently than this are skipped",
    )
    connect_attempts: int = Field(
        default=3,
        gt=0,
        description="Ping attempts at the start of each cycle before giving up",
    )
    connect_retry_delay: timedelta = Field(
        default=timedelta(seconds=1),
        description="Initial backoff between ping attempts",
    )

    @field_validator("optimize_interval", "connect_retry_delay", mode="before")
    @classmethod
    def parse_durations(cls, v: Any) -> Any:
        return _coerce_duration(v)

    @field_validator("optimize_interval", "connect_retry_delay")
    @classmethod
    def durations_positive(cls, v: timedelta) -> timedelta:
        return _require_positive(v)

    @field_validator("server_dsn")
    @classmethod
    def validate_dsn(cls, v: str) -> str:
        """Reject DSNs SQLAlchemy cannot parse; upgrade legacy tcp:// DSNs."""
        if v.startswith("tcp://"):
            v = "clickhouse+native://" + v.removeprefix("tcp://")
        try:
            make_url(v)
        except ArgumentError as e:
            raise ValueError(f"invalid server DSN: {e}") from e
        return v


class DaemonSettings(BaseModel):
    """Scheduling configuration."""

    model_config = {"frozen": True}

    one_shot: bool = Field(default=False, description="Run a single cycle and exit")
    loop_interval: timedelta = Field(
        default=timedelta(hours=1),
        description="Sleep between cycles in loop mode",
    )
    dry_run: bool = Field(default=False, description="Only report what would be merged")

    @model_validator(mode="after")
    def dry_run_forces_one_shot(self) -> "DaemonSettings":
        """A dry run is always done once, whatever form dry_run was given in."""
        if self.dry_run and not self.one_shot:
            # Frozen model: bypass __setattr__ during validation
            object.__setattr__(self, "one_shot", True)
        return self

    @field_validator("loop_interval", mode="before")
    @classmethod
    def parse_loop_interval(cls, v: Any) -> Any:
        return _coerce_duration(v)

    @field_validator("loop_interval")
    @classmethod
    def loop_interval_positive(cls, v: timedelta) -> timedelta:
        return _require_positive(v)


class LoggingSettings(BaseModel):
    """Log sink configuration."""

    model_config = {"frozen": True}

    output: str = Field(default="-", description="Log file path, '-' for stdout")
    level: str = Field(default="info", description=f"One of: {', '.join(LOG_LEVELS)}")
    format: Literal["console", "json"] = Field(default="console", description="Log renderer")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        normalized = v.strip().lower()
        if normalized not in LOG_LEVELS:
            raise ValueError(f"unknown log level {v!r}, expected one of: {', '.join(LOG_LEVELS)}")
        return normalized


class OptimizerSettings(BaseModel):
    """Top-level ch-optimizer configuration.

    This is the single source of truth for the daemon. All settings are
    validated and frozen after construction.
    """

    model_config = {"frozen": True}

    clickhouse: ClickHouseSettings = Field(default_factory=ClickHouseSettings)
    daemon: DaemonSettings = Field(default_factory=DaemonSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


def _normalize_keys(value: Any) -> Any:
    """Lowercase keys and accept 'server-dsn' as 'server_dsn'."""
    if isinstance(value, dict):
        return {str(k).lower().replace("-", "_"): _normalize_keys(v) for k, v in value.items()}
    return value


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def default_config_paths(app_name: str = APP_NAME) -> list[Path]:
    """Candidate config files, user config dir first, then /etc."""
    dirs: list[Path] = []
    xdg = os.environ.get("XDG_CONFIG_HOME")
    user_config = Path(xdg) if xdg else Path.home() / ".config"
    dirs.append(user_config / app_name)
    dirs.append(Path("/etc") / app_name)
    return [d / name for d in dirs for name in _CONFIG_FILE_NAMES]


def find_config_file(candidates: list[Path] | None = None) -> Path | None:
    """Return the first existing config file, or None."""
    for path in candidates if candidates is not None else default_config_paths():
        if path.is_file():
            return path
    return None


def load_settings(
    config_path: Path | None = None,
    overrides: dict[str, Any] | None = None,
) -> OptimizerSettings:
    """Load settings from a config file with environment and CLI overrides.

    Precedence, highest first:
    1. ``overrides`` (command-line flags)
    2. Environment variables (CH_OPTIMIZER_*), e.g. CH_OPTIMIZER_DAEMON__ONE_SHOT
    3. Config file (TOML or YAML, chosen by extension)
    4. Defaults from the Pydantic schema

    Args:
        config_path: Config file to read; None means defaults and environment only
        overrides: Nested dict of already-parsed command-line values

    Returns:
        Validated OptimizerSettings instance

    Raises:
        ValidationError: If configuration fails Pydantic validation
        FileNotFoundError: If config_path is given but doesn't exist
    """
    from dynaconf import Dynaconf

    # Explicit check for file existence (Dynaconf silently accepts missing files)
    if config_path is not None and not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    dynaconf_settings = Dynaconf(
        envvar_prefix=ENVVAR_PREFIX,
        settings_files=[str(config_path)] if config_path is not None else [],
        environments=False,
        load_dotenv=False,
        merge_enabled=True,
    )

    # Dynaconf returns uppercase keys and mixes in its own settings
    internal_keys = {"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES"}
    raw_config = _normalize_keys({k: v for k, v in dynaconf_settings.as_dict().items() if k not in internal_keys})

    if overrides:
        raw_config = _deep_merge(raw_config, _normalize_keys(overrides))

    return OptimizerSettings(**raw_config)


def redact_dsn(dsn: str) -> str:
    """Mask the password in a DSN for logging."""
    try:
        return make_url(dsn).render_as_string(hide_password=True)
    except ArgumentError:
        return dsn


def settings_to_dict(settings: OptimizerSettings, *, redact: bool = False) -> dict[str, Any]:
    """Plain dict view of the settings with durations in Go-style notation."""

    def _render(value: Any) -> Any:
        if isinstance(value, dict):
            return {k: _render(v) for k, v in value.items()}
        if isinstance(value, timedelta):
            return format_duration(value)
        return value

    data: dict[str, Any] = _render(settings.model_dump())
    if redact:
        data["clickhouse"]["server_dsn"] = redact_dsn(data["clickhouse"]["server_dsn"])
    return data


def render_defaults() -> str:
    """Default configuration as YAML, for --print-defaults."""
    return yaml.safe_dump(settings_to_dict(OptimizerSettings()), sort_keys=False)
