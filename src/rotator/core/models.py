"""
Stream rotator data models.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional


class EngineState(str, Enum):
    """States of the copy loop."""

    ATTACHING = "attaching"
    READING = "reading"
    ROTATING = "rotating"
    DRAINING = "draining"
    STOPPED = "stopped"


class RotationReason(str, Enum):
    """Which trigger forced a rotation."""

    SIZE = "size"
    AGE = "age"


class _EndOfStream:
    """Marker returned by a source when the current writer has gone away."""

    _instance: Optional["_EndOfStream"] = None

    def __new__(cls) -> "_EndOfStream":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "END_OF_STREAM"


END_OF_STREAM = _EndOfStream()


@dataclass
class OutputFile:
    """
    The output file currently owned by the sink.

    Attributes:
        name: Final file name (what downstream consumers see once rotated)
        path: Path the bytes are written to while the file is open
        final_path: Path of the file after it is rotated out
        opened_at: Monotonic clock reading taken when the file was opened
        bytes_written: Stream position inside this file
    """

    name: str
    path: Path
    final_path: Path
    opened_at: float
    bytes_written: int = 0

    @property
    def is_empty(self) -> bool:
        return self.bytes_written == 0


@dataclass
class EngineStats:
    """Counters collected over one engine run."""

    bytes_written: int = 0
    chunks_written: int = 0
    rotations: int = 0
    attachments: int = 0
    source_failures: int = 0
    discarded_bytes: int = 0
    files_opened: int = 0
    last_file: Optional[str] = None

    def record_chunk(self, size: int) -> None:
        self.bytes_written += size
        self.chunks_written += 1

    def record_file(self, name: str) -> None:
        self.files_opened += 1
        self.last_file = name


@dataclass
class EngineResult:
    """Outcome of `CopyEngine.run`."""

    exit_code: int
    stats: EngineStats
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


__all__ = [
    "EngineState",
    "RotationReason",
    "END_OF_STREAM",
    "OutputFile",
    "EngineStats",
    "EngineResult",
]
