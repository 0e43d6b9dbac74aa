"""Run configuration: one immutable record built at startup."""

from __future__ import annotations

import logging
import os
import re
from enum import Enum
from pathlib import Path
from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from rotator.core.constants import (
    DEFAULT_BACKOFF_INITIAL,
    DEFAULT_BACKOFF_MAX,
    DEFAULT_BACKOFF_MULTIPLIER,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_COOLDOWN,
    DEFAULT_SEQ_WIDTH,
    DEFAULT_SHUTDOWN_GRACE,
)
from rotator.core.errors import ConfigurationError

_SIZE_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([kmgt]?)(?:i?b)?\s*$", re.IGNORECASE)
_SIZE_UNITS = {"": 1, "k": 1024, "m": 1024**2, "g": 1024**3, "t": 1024**4}

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h|d)?\s*$", re.IGNORECASE)
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0, "d": 86400.0}


def parse_size(value: Any) -> Optional[int]:
    """Translate `10M`, `512K`, `1GiB` or a plain number into bytes."""
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return int(value)
    match = _SIZE_RE.match(str(value))
    if not match:
        raise ValueError(f"Invalid size: {value!r}")
    number, unit = match.groups()
    return int(float(number) * _SIZE_UNITS[unit.lower()])


def parse_duration(value: Any) -> Optional[float]:
    """Translate `30s`, `5m`, `1h`, `250ms` or a plain number into seconds."""
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return float(value)
    match = _DURATION_RE.match(str(value))
    if not match:
        raise ValueError(f"Invalid duration: {value!r}")
    number, unit = match.groups()
    return float(number) * _DURATION_UNITS[(unit or "s").lower()]


class NamingScheme(str, Enum):
    """How output file names are derived."""

    SEQUENCE = "sequence"
    TIMESTAMP = "timestamp"


class WriteErrorPolicy(str, Enum):
    """What the engine does once the sink fails."""

    ABORT = "abort"
    DISCARD = "discard"


class RotationTrigger(BaseModel):
    """Conditions forcing a rotation; both unset means never rotate."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_bytes: Optional[int] = Field(None, description="Maximum bytes per file")
    max_age: Optional[float] = Field(None, description="Maximum seconds per file")

    @field_validator("max_bytes", mode="before")
    @classmethod
    def _parse_max_bytes(cls, v: Any) -> Optional[int]:
        return parse_size(v)

    @field_validator("max_age", mode="before")
    @classmethod
    def _parse_max_age(cls, v: Any) -> Optional[float]:
        return parse_duration(v)

    @field_validator("max_bytes", "max_age")
    @classmethod
    def _positive(cls, v: Optional[float]) -> Optional[float]:
        if v is not None and v <= 0:
            raise ValueError("rotation threshold must be positive")
        return v

    @property
    def enabled(self) -> bool:
        return self.max_bytes is not None or self.max_age is not None


class RetryBackoff(BaseModel):
    """Reattachment retry policy used in daemon mode."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    initial: float = Field(DEFAULT_BACKOFF_INITIAL, ge=0, description="First delay (s)")
    max: float = Field(DEFAULT_BACKOFF_MAX, ge=0, description="Delay cap (s)")
    multiplier: float = Field(DEFAULT_BACKOFF_MULTIPLIER, ge=1.0)
    jitter: bool = Field(True, description="Randomize delays by +/-50%")
    max_restarts: Optional[int] = Field(
        None, ge=0, description="Consecutive failures tolerated; None = unbounded"
    )
    cooldown: float = Field(
        DEFAULT_COOLDOWN,
        ge=0,
        description="Writer sessions shorter than this count as failures (s)",
    )

    @field_validator("initial", "max", "cooldown", mode="before")
    @classmethod
    def _parse_durations(cls, v: Any) -> Optional[float]:
        return parse_duration(v)

    @model_validator(mode="after")
    def _check_cap(self) -> "RetryBackoff":
        if self.max < self.initial:
            raise ValueError("retry_backoff.max must be >= retry_backoff.initial")
        return self


class RunConfig(BaseModel):
    """Immutable configuration for one process lifetime."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    source_path: Optional[Path] = Field(None, description="Named pipe; None = stdin")
    output_prefix: str = Field(..., description="Output directory + file prefix")
    trigger: RotationTrigger = Field(default_factory=RotationTrigger)
    daemon: bool = False
    continue_read: bool = False
    retry_backoff: RetryBackoff = Field(default_factory=RetryBackoff)
    shutdown_grace: float = Field(DEFAULT_SHUTDOWN_GRACE, ge=0)

    chunk_size: int = Field(DEFAULT_CHUNK_SIZE, gt=0)
    naming: NamingScheme = NamingScheme.SEQUENCE
    seq_width: int = Field(DEFAULT_SEQ_WIDTH, ge=1, le=20)
    extension: str = ""
    active_suffix: str = ""
    keep_files: Optional[int] = Field(None, ge=1)
    on_write_error: WriteErrorPolicy = WriteErrorPolicy.ABORT
    create_fifo: bool = False
    pid_file: Optional[Path] = None
    metrics_port: Optional[int] = Field(None, ge=1, le=65535)
    log_level: str = "INFO"
    log_json: bool = True

    @field_validator("chunk_size", mode="before")
    @classmethod
    def _parse_chunk_size(cls, v: Any) -> Optional[int]:
        return parse_size(v)

    @field_validator("shutdown_grace", mode="before")
    @classmethod
    def _parse_grace(cls, v: Any) -> Optional[float]:
        return parse_duration(v)

    @field_validator("output_prefix")
    @classmethod
    def _check_prefix(cls, v: str) -> str:
        if not v or v.endswith(("/", os.sep)) or not Path(v).name:
            raise ValueError("output_prefix must end with a file name prefix")
        return v

    @field_validator("extension")
    @classmethod
    def _normalize_extension(cls, v: str) -> str:
        if not v:
            return v
        if "/" in v or os.sep in v:
            raise ValueError("extension may not contain path separators")
        return v if v.startswith(".") else "." + v

    @field_validator("active_suffix")
    @classmethod
    def _check_suffix(cls, v: str) -> str:
        if "/" in v or os.sep in v:
            raise ValueError("active_suffix may not contain path separators")
        return v

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, v: str) -> str:
        level = v.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"unknown log level {v!r}")
        return level

    @model_validator(mode="after")
    def _check_combinations(self) -> "RunConfig":
        if self.continue_read and not self.daemon:
            raise ValueError("continue_read requires daemon mode")
        if self.continue_read and self.source_path is None:
            raise ValueError(
                "continue_read requires a named pipe source (stdin cannot be reattached)"
            )
        if self.on_write_error is WriteErrorPolicy.DISCARD and not self.daemon:
            raise ValueError("on_write_error=discard requires daemon mode")
        if self.create_fifo and self.source_path is None:
            raise ValueError("create_fifo requires a source path")
        return self

    @property
    def output_dir(self) -> Path:
        return Path(self.output_prefix).parent

    @property
    def file_prefix(self) -> str:
        return Path(self.output_prefix).name

    @property
    def uses_stdin(self) -> bool:
        return self.source_path is None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "RunConfig":
        """Validate raw values, reporting problems as `ConfigurationError`."""
        try:
            return cls.model_validate(dict(data))
        except ValidationError as exc:
            raise ConfigurationError(_format_validation_error(exc)) from exc

    @classmethod
    def from_env(cls) -> "RunConfig":
        return cls.from_mapping(env_values())

    @classmethod
    def from_yaml(cls, path: str | Path) -> "RunConfig":
        return cls.from_mapping(yaml_values(path))

    @classmethod
    def build(
        cls,
        overrides: Optional[Mapping[str, Any]] = None,
        config_file: Optional[str | Path] = None,
    ) -> "RunConfig":
        """
        Merge configuration sources.

        Precedence: overrides (CLI) > YAML file > ROTATOR_* environment > defaults.
        """
        data = env_values()
        if config_file is not None:
            data = _deep_merge(data, yaml_values(config_file))
        if overrides:
            data = _deep_merge(data, _drop_none(overrides))
        return cls.from_mapping(data)


def yaml_values(path: str | Path) -> dict[str, Any]:
    import yaml

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as exc:
        raise ConfigurationError(f"Cannot read config file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in {path}: {exc}") from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file {path} must contain a mapping")
    return data


def env_values(environ: Optional[Mapping[str, str]] = None) -> dict[str, Any]:
    """Collect ROTATOR_* variables (and LOG_LEVEL) into a nested mapping."""
    env = os.environ if environ is None else environ
    data: dict[str, Any] = {}

    def _set(key: str, var: str, section: Optional[str] = None) -> None:
        raw = env.get(var)
        if raw is None or raw == "":
            return
        target = data.setdefault(section, {}) if section else data
        target[key] = raw

    _set("source_path", "ROTATOR_SOURCE")
    _set("output_prefix", "ROTATOR_OUTPUT_PREFIX")
    _set("max_bytes", "ROTATOR_MAX_BYTES", "trigger")
    _set("max_age", "ROTATOR_MAX_AGE", "trigger")
    _set("daemon", "ROTATOR_DAEMON")
    _set("continue_read", "ROTATOR_CONTINUE_READ")
    _set("initial", "ROTATOR_BACKOFF_INITIAL", "retry_backoff")
    _set("max", "ROTATOR_BACKOFF_MAX", "retry_backoff")
    _set("multiplier", "ROTATOR_BACKOFF_MULTIPLIER", "retry_backoff")
    _set("jitter", "ROTATOR_BACKOFF_JITTER", "retry_backoff")
    _set("max_restarts", "ROTATOR_MAX_RESTARTS", "retry_backoff")
    _set("cooldown", "ROTATOR_COOLDOWN", "retry_backoff")
    _set("shutdown_grace", "ROTATOR_SHUTDOWN_GRACE")
    _set("chunk_size", "ROTATOR_CHUNK_SIZE")
    _set("naming", "ROTATOR_NAMING")
    _set("seq_width", "ROTATOR_SEQ_WIDTH")
    _set("extension", "ROTATOR_EXTENSION")
    _set("keep_files", "ROTATOR_KEEP_FILES")
    _set("active_suffix", "ROTATOR_ACTIVE_SUFFIX")
    _set("on_write_error", "ROTATOR_ON_WRITE_ERROR")
    _set("create_fifo", "ROTATOR_CREATE_FIFO")
    _set("pid_file", "ROTATOR_PID_FILE")
    _set("metrics_port", "ROTATOR_METRICS_PORT")
    _set("log_level", "LOG_LEVEL")
    _set("log_json", "ROTATOR_LOG_JSON")
    return data


def _drop_none(values: Mapping[str, Any]) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for key, value in values.items():
        if isinstance(value, Mapping):
            nested = _drop_none(value)
            if nested:
                result[key] = nested
        elif value is not None:
            result[key] = value
    return result


def _deep_merge(base: Mapping[str, Any], extra: Mapping[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in extra.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def _format_validation_error(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "config"
        parts.append(f"{loc}: {err.get('msg')}")
    return "Invalid configuration: " + "; ".join(parts)


__all__ = [
    "RunConfig",
    "RotationTrigger",
    "RetryBackoff",
    "NamingScheme",
    "WriteErrorPolicy",
    "parse_size",
    "parse_duration",
    "env_values",
    "yaml_values",
]
