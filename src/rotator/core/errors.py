"""
Error taxonomy for the stream rotator.

Every terminal error carries the process exit code the CLI reports for it.
"""

from __future__ import annotations

from typing import Optional

from rotator.core.constants import (
    EXIT_CONFIGURATION_ERROR,
    EXIT_INTERNAL_ERROR,
    EXIT_READ_ERROR,
    EXIT_SOURCE_UNAVAILABLE,
    EXIT_WRITE_ERROR,
)


class RotatorError(Exception):
    """Base class for all stream rotator errors."""

    exit_code: int = EXIT_INTERNAL_ERROR


class SourceUnavailable(RotatorError):
    """Input path missing, not a FIFO or not accessible at attach time."""

    exit_code = EXIT_SOURCE_UNAVAILABLE

    def __init__(self, message: str, source: Optional[str] = None) -> None:
        super().__init__(message)
        self.source = source


class ReadError(RotatorError):
    """I/O failure while reading an attached source."""

    exit_code = EXIT_READ_ERROR


class WriteError(RotatorError):
    """The output sink cannot accept more data."""

    exit_code = EXIT_WRITE_ERROR

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        super().__init__(message)
        self.path = path


class RotationNamingConflict(RotatorError):
    """Generated output name already exists; resolved inside the sink."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Output file already exists: {name}")
        self.name = name


class ConfigurationError(RotatorError):
    """Invalid run configuration detected at startup."""

    exit_code = EXIT_CONFIGURATION_ERROR


class ShutdownRequested(Exception):
    """Raised by the signal handler to leave a blocking wait."""


__all__ = [
    "RotatorError",
    "SourceUnavailable",
    "ReadError",
    "WriteError",
    "RotationNamingConflict",
    "ConfigurationError",
    "ShutdownRequested",
]
