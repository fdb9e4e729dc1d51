"""Engine configuration loading and validation.

Reads event_matcher.toml, parses the [engine] and [engine.logging] sections,
and returns a validated EngineConfig dataclass.
"""

from __future__ import annotations

import os
import re
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

CONFIG_FILENAME = "event_matcher.toml"

# Pattern matching ${VAR_NAME}: alphanumeric + underscore variable names.
_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
_MINUTES_PER_HOUR = 60


class ConfigError(Exception):
    """Raised when engine configuration is missing, malformed, or invalid."""


@dataclass
class LoggingConfig:
    """Logging configuration from [engine.logging] section."""

    level: str = "INFO"
    format: str = "text"  # "text" or "json"
    log_file: str | None = None


@dataclass
class EngineConfig:
    """Parsed and validated engine configuration.

    ``bucket_minutes`` and ``slot_alignment_minutes`` must divide an hour so
    buckets and slots share one grid.  ``exact_overlap_horizon_days`` enables
    the exception-aware recurring overlap check; ``None`` keeps the coarse one.
    """

    name: str = "event-matcher"
    bucket_minutes: int = 15
    slot_alignment_minutes: int = 15
    min_slot_minutes: int = 30
    exact_overlap_horizon_days: int | None = None
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ``${VAR_NAME}`` references in config values.

    Walks dicts, lists, and strings.  Non-string leaf values (int, bool,
    float, None) are returned unchanged.

    Raises
    ------
    ConfigError
        If a referenced environment variable is not set.
    """
    if isinstance(value, dict):
        return {k: resolve_env_vars(v) for k, v in value.items()}

    if isinstance(value, list):
        return [resolve_env_vars(item) for item in value]

    if isinstance(value, str):
        return _resolve_string(value)

    return value


def _resolve_string(s: str) -> str:
    """Replace all ``${VAR_NAME}`` occurrences in *s* with env var values.

    Collects all missing variable names and reports them in a single error.
    """
    missing: list[str] = []

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            missing.append(var_name)
            return match.group(0)
        return env_value

    result = _ENV_VAR_PATTERN.sub(_replace, s)

    if missing:
        vars_str = ", ".join(missing)
        raise ConfigError(
            f"Unresolved environment variable(s) in config value: {vars_str} (original: {s!r})"
        )

    return result


def _positive_int(section: dict[str, Any], key: str, default: int) -> int:
    raw = section.get(key, default)
    try:
        value = int(raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid engine.{key}: {raw!r}. Must be an integer.") from exc
    if isinstance(raw, bool) or value <= 0:
        raise ConfigError(f"Invalid engine.{key}: {raw!r}. Must be a positive integer.")
    return value


def _grid_minutes(section: dict[str, Any], key: str, default: int) -> int:
    value = _positive_int(section, key, default)
    if _MINUTES_PER_HOUR % value != 0:
        raise ConfigError(f"Invalid engine.{key}: {value!r}. Must divide 60 evenly.")
    return value


def _parse_logging(engine_section: dict[str, Any]) -> LoggingConfig:
    """Parse the optional [engine.logging] sub-section."""
    logging_section = engine_section.get("logging", {})
    if not isinstance(logging_section, dict):
        raise ConfigError("engine.logging must be a TOML table")

    log_level = str(logging_section.get("level", "INFO")).upper()
    if log_level not in _LOG_LEVELS:
        raise ConfigError(
            f"Invalid engine.logging.level: {log_level!r}. "
            f"Expected one of {', '.join(_LOG_LEVELS)}."
        )
    log_format = str(logging_section.get("format", "text")).lower()
    if log_format not in ("text", "json"):
        raise ConfigError(
            f"Invalid engine.logging.format: {log_format!r}. Expected 'text' or 'json'."
        )
    return LoggingConfig(
        level=log_level,
        format=log_format,
        log_file=logging_section.get("log_file"),
    )


def parse_config(data: dict[str, Any]) -> EngineConfig:
    """Validate an already-parsed TOML document into an ``EngineConfig``.

    A document without an [engine] section yields the defaults.
    """
    data = resolve_env_vars(data)
    engine_section = data.get("engine", {})
    if not isinstance(engine_section, dict):
        raise ConfigError("[engine] must be a TOML table")

    name = str(engine_section.get("name", "event-matcher")).strip()
    if not name:
        raise ConfigError("engine.name must be a non-empty string")

    bucket_minutes = _grid_minutes(engine_section, "bucket_minutes", 15)
    slot_alignment_minutes = _grid_minutes(engine_section, "slot_alignment_minutes", 15)
    min_slot_minutes = _positive_int(engine_section, "min_slot_minutes", 30)

    horizon: int | None = None
    if engine_section.get("exact_overlap_horizon_days") is not None:
        horizon = _positive_int(engine_section, "exact_overlap_horizon_days", 0)

    return EngineConfig(
        name=name,
        bucket_minutes=bucket_minutes,
        slot_alignment_minutes=slot_alignment_minutes,
        min_slot_minutes=min_slot_minutes,
        exact_overlap_horizon_days=horizon,
        logging=_parse_logging(engine_section),
    )


def load_config(path: Path) -> EngineConfig:
    """Load and validate an event_matcher.toml.

    Parameters
    ----------
    path:
        Either the TOML file itself or a directory containing
        ``event_matcher.toml``.

    Returns
    -------
    EngineConfig
        Fully parsed and validated configuration.

    Raises
    ------
    ConfigError
        If the file is missing, contains invalid TOML, or has invalid values.
    """
    toml_path = path / CONFIG_FILENAME if path.is_dir() else path

    if not toml_path.exists():
        raise ConfigError(f"Config file not found: {toml_path}")

    raw_bytes = toml_path.read_bytes()
    try:
        data = tomllib.loads(raw_bytes.decode("utf-8"))
    except UnicodeDecodeError as exc:
        raise ConfigError(f"Config file is not valid UTF-8: {toml_path}: {exc}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {toml_path}: {exc}") from exc

    return parse_config(data)
