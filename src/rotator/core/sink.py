"""
File sink manager - owns the open output file and performs rotation.
"""

from __future__ import annotations

import os
import time
from pathlib import Path
from typing import Callable, Optional

from rotator.config.config import RunConfig
from rotator.core.constants import MAX_NAME_ATTEMPTS
from rotator.core.errors import RotationNamingConflict, WriteError
from rotator.core.models import OutputFile
from rotator.core.naming import NameGenerator, build_name_generator
from rotator.monitoring.metrics import (
    BYTES_WRITTEN,
    CHUNKS_WRITTEN,
    CURRENT_FILE_BYTES,
    FILES_PRUNED,
    WRITE_ERRORS,
)
from rotator.utils.logging import get_logger
from rotator.utils.retry import retry

logger = get_logger(__name__)

_OPEN_FLAGS = os.O_WRONLY | os.O_CREAT | os.O_EXCL | getattr(os, "O_CLOEXEC", 0)


def _fsync_dir(directory: Path) -> None:
    try:
        fd = os.open(directory, os.O_RDONLY)
    except OSError as exc:
        logger.debug("dir_fsync_unsupported", directory=str(directory), error=str(exc))
        return
    try:
        os.fsync(fd)
    except OSError as exc:
        logger.debug("dir_fsync_unsupported", directory=str(directory), error=str(exc))
    finally:
        os.close(fd)


class FileSinkManager:
    """
    Writes chunks into a sequence of output files, one open at a time.

    Invariants:
      - at most one output file is open;
      - a file is fsynced and closed (and renamed to its final name when an
        `active_suffix` is used) before the next one is created;
      - files are created exclusively, so no name is ever reused;
      - a chunk lands in a file completely or not at all.
    """

    def __init__(
        self,
        directory: str | Path,
        names: NameGenerator,
        active_suffix: str = "",
        keep_files: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
        file_mode: int = 0o644,
    ) -> None:
        """
        Args:
            directory: Output directory (created on `open`)
            names: Name generator producing sortable, increasing names
            active_suffix: Suffix carried by the open file until it is rotated
                out (e.g. ".part"); empty writes under the final name
            keep_files: Number of files (including the open one) to retain;
                None keeps everything
            clock: Monotonic clock used for `OutputFile.opened_at`
            file_mode: Permission bits for created files
        """
        if keep_files is not None and keep_files < 1:
            raise ValueError("keep_files must be >= 1")
        self.directory = Path(directory)
        self.names = names
        self.active_suffix = active_suffix
        self.keep_files = keep_files
        self.clock = clock
        self.file_mode = file_mode

        self._fd: Optional[int] = None
        self._current: Optional[OutputFile] = None
        self.finalized_count = 0
        self.last_finalized: Optional[str] = None

    @classmethod
    def from_config(
        cls, config: RunConfig, clock: Callable[[], float] = time.monotonic
    ) -> "FileSinkManager":
        return cls(
            config.output_dir,
            build_name_generator(config),
            active_suffix=config.active_suffix,
            keep_files=config.keep_files,
            clock=clock,
        )

    @property
    def is_open(self) -> bool:
        return self._current is not None

    def current_sink(self) -> OutputFile:
        if self._current is None:
            raise RuntimeError("No output file is open")
        return self._current

    def open(self) -> OutputFile:
        """Create the output directory and the first output file."""
        if self._current is not None:
            return self._current
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            existing = os.listdir(self.directory)
        except OSError as exc:
            raise WriteError(
                f"Cannot prepare output directory {self.directory}: {exc}",
                path=str(self.directory),
            ) from exc

        self.names.seed(self._strip_suffix(name) for name in existing)
        return self._open_next()

    def rotate(self) -> OutputFile:
        """Finalize the current file, then open the next one."""
        previous = self._finalize()
        current = self._open_next()
        if previous is not None:
            logger.info(
                "file_rotated",
                previous=previous.name,
                previous_bytes=previous.bytes_written,
                current=current.name,
            )
        self._prune()
        return current

    def write(self, chunk: bytes) -> int:
        """Append a whole chunk to the current file."""
        current = self.current_sink()
        if not chunk:
            return 0

        try:
            self._write_chunk(chunk, current.bytes_written)
        except OSError as exc:
            WRITE_ERRORS.inc()
            raise WriteError(
                f"Write to {current.path} failed: {exc}", path=str(current.path)
            ) from exc

        current.bytes_written += len(chunk)
        BYTES_WRITTEN.inc(len(chunk))
        CHUNKS_WRITTEN.inc()
        CURRENT_FILE_BYTES.set(current.bytes_written)
        return len(chunk)

    def close(self) -> Optional[OutputFile]:
        """Finalize the current file, if any. Safe to call repeatedly."""
        return self._finalize()

    @retry(max_attempts=2, backoff_base=0.0, jitter=False, exceptions=(OSError,))
    def _write_chunk(self, chunk: bytes, offset: int) -> None:
        assert self._fd is not None
        view = memoryview(chunk)
        written = 0
        try:
            while written < len(view):
                n = os.write(self._fd, view[written:])
                if n == 0:
                    raise OSError("short write made no progress")
                written += n
        except OSError:
            self._rollback(offset)
            raise

    def _rollback(self, offset: int) -> None:
        """Cut the file back to where the failed chunk started."""
        assert self._fd is not None
        try:
            os.ftruncate(self._fd, offset)
            os.lseek(self._fd, offset, os.SEEK_SET)
        except OSError as exc:
            # Not an OSError on purpose: retrying from an unknown offset
            # would duplicate bytes.
            raise WriteError(
                f"Cannot roll back partial write: {exc}",
                path=str(self._current.path) if self._current else None,
            ) from exc

    def _strip_suffix(self, name: str) -> str:
        if self.active_suffix and name.endswith(self.active_suffix):
            return name[: -len(self.active_suffix)]
        return name

    def _open_next(self) -> OutputFile:
        if self._current is not None:
            raise RuntimeError("Previous output file is still open")

        for _ in range(MAX_NAME_ATTEMPTS):
            name = self.names.next_name()
            final_path = self.directory / name
            path = (
                self.directory / (name + self.active_suffix)
                if self.active_suffix
                else final_path
            )
            try:
                if self.active_suffix and final_path.exists():
                    raise RotationNamingConflict(name)
                fd = os.open(path, _OPEN_FLAGS, self.file_mode)
            except (FileExistsError, RotationNamingConflict):
                logger.debug("output_name_taken", name=name)
                continue
            except OSError as exc:
                raise WriteError(
                    f"Cannot create output file {path}: {exc}", path=str(path)
                ) from exc
            break
        else:
            raise WriteError(
                f"No free output name after {MAX_NAME_ATTEMPTS} attempts",
                path=str(self.directory),
            )

        self._fd = fd
        self._current = OutputFile(
            name=name, path=path, final_path=final_path, opened_at=self.clock()
        )
        _fsync_dir(self.directory)
        CURRENT_FILE_BYTES.set(0)
        logger.info("file_opened", name=name, path=str(path))
        return self._current

    def _finalize(self) -> Optional[OutputFile]:
        current, fd = self._current, self._fd
        if current is None or fd is None:
            return None
        self._current = None
        self._fd = None

        try:
            os.fsync(fd)
        except OSError as exc:
            raise WriteError(
                f"Cannot flush {current.path}: {exc}", path=str(current.path)
            ) from exc
        finally:
            os.close(fd)

        if current.path != current.final_path:
            try:
                os.replace(current.path, current.final_path)
            except OSError as exc:
                raise WriteError(
                    f"Cannot publish {current.final_path}: {exc}",
                    path=str(current.path),
                ) from exc
        _fsync_dir(self.directory)

        self.finalized_count += 1
        self.last_finalized = current.name
        logger.info(
            "file_finalized", name=current.name, bytes_written=current.bytes_written
        )
        return current

    def _prune(self) -> None:
        if self.keep_files is None:
            return
        current_name = self._current.name if self._current else None
        try:
            finalized = sorted(
                name
                for name in os.listdir(self.directory)
                if self.names.matches(name) and name != current_name
            )
        except OSError as exc:
            logger.warning("retention_scan_failed", error=str(exc))
            return

        excess = len(finalized) - (self.keep_files - 1)
        for name in finalized[: max(excess, 0)]:
            try:
                (self.directory / name).unlink()
            except FileNotFoundError:
                continue
            except OSError as exc:
                logger.warning("retention_delete_failed", name=name, error=str(exc))
                continue
            FILES_PRUNED.inc()
            logger.info("file_pruned", name=name)

    def __enter__(self) -> "FileSinkManager":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


__all__ = ["FileSinkManager"]
