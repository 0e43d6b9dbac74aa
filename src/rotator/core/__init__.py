"""Stream rotator core: errors, models, naming, policy and sink."""

from .constants import DEFAULT_CHUNK_SIZE
from .errors import (
    ConfigurationError,
    ReadError,
    RotationNamingConflict,
    RotatorError,
    ShutdownRequested,
    SourceUnavailable,
    WriteError,
)
from .models import END_OF_STREAM, EngineResult, EngineState, EngineStats, OutputFile

__all__ = [
    "DEFAULT_CHUNK_SIZE",
    "RotatorError",
    "SourceUnavailable",
    "ReadError",
    "WriteError",
    "RotationNamingConflict",
    "ConfigurationError",
    "ShutdownRequested",
    "END_OF_STREAM",
    "EngineResult",
    "EngineState",
    "EngineStats",
    "OutputFile",
]
