"""Stream rotator - copy a byte stream into rotated output files."""

__version__ = "0.1.0"

from .config import RunConfig  # noqa: E402
from .core import (  # noqa: E402
    END_OF_STREAM,
    ConfigurationError,
    ReadError,
    RotatorError,
    SourceUnavailable,
    WriteError,
)
from .core.policy import RotationPolicy  # noqa: E402
from .core.sink import FileSinkManager  # noqa: E402
from .engine import CopyEngine, DaemonSupervisor  # noqa: E402
from .source import FifoSource, StdinSource  # noqa: E402

__all__ = [
    "RunConfig",
    "CopyEngine",
    "DaemonSupervisor",
    "FileSinkManager",
    "RotationPolicy",
    "StdinSource",
    "FifoSource",
    "END_OF_STREAM",
    "RotatorError",
    "SourceUnavailable",
    "ReadError",
    "WriteError",
    "ConfigurationError",
]
