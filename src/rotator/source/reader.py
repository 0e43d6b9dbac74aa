"""
Source readers - standard input or a named pipe, read in chunks.

`read` distinguishes three outcomes: a chunk of bytes, `END_OF_STREAM`
(the writer went away; normal, and recoverable for a named pipe) and
`ReadError` (the source failed).
"""

from __future__ import annotations

import os
import stat
import sys
import time
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Callable, Iterator, Optional, Protocol, Union

from rotator.config.config import RunConfig
from rotator.core.constants import DEFAULT_CHUNK_SIZE, FIFO_MODE
from rotator.core.errors import ReadError, SourceUnavailable
from rotator.core.models import END_OF_STREAM, _EndOfStream
from rotator.utils.logging import get_logger

logger = get_logger(__name__)

ReadResult = Union[bytes, _EndOfStream]


@dataclass
class Attachment:
    """One live connection to the input origin."""

    fd: int
    origin: str
    attached_at: float
    owns_fd: bool = True
    bytes_read: int = 0
    closed: bool = False


class SourceReader(Protocol):
    origin: str
    reattachable: bool

    def open(self) -> Attachment:
        """Attach to the input; may block (named pipe waits for a writer)."""
        ...

    def read(self, attachment: Attachment) -> ReadResult:
        ...

    def drain(self, attachment: Attachment, deadline: float) -> Iterator[bytes]:
        """Yield bytes already buffered in the source, without blocking."""
        ...

    def close(self, attachment: Attachment) -> None:
        ...


class _FdSource:
    """Shared chunked reading over a file descriptor."""

    origin = "fd"
    reattachable = True

    def __init__(
        self,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.chunk_size = chunk_size
        self.clock = clock

    def _attachment(self, fd: int, owns_fd: bool) -> Attachment:
        return Attachment(
            fd=fd, origin=self.origin, attached_at=self.clock(), owns_fd=owns_fd
        )

    def read(self, attachment: Attachment) -> ReadResult:
        if attachment.closed:
            raise ReadError(f"Attachment to {self.origin} is closed")
        try:
            data = os.read(attachment.fd, self.chunk_size)
        except OSError as exc:
            raise ReadError(f"Read from {self.origin} failed: {exc}") from exc
        if not data:
            return END_OF_STREAM
        attachment.bytes_read += len(data)
        return data

    def drain(self, attachment: Attachment, deadline: float) -> Iterator[bytes]:
        if attachment.closed:
            return
        try:
            was_blocking = os.get_blocking(attachment.fd)
            os.set_blocking(attachment.fd, False)
        except OSError as exc:
            logger.warning("drain_unsupported", origin=self.origin, error=str(exc))
            return
        try:
            while self.clock() < deadline:
                try:
                    data = os.read(attachment.fd, self.chunk_size)
                except BlockingIOError:
                    break
                except OSError as exc:
                    logger.warning("drain_read_failed", origin=self.origin, error=str(exc))
                    break
                if not data:
                    break
                attachment.bytes_read += len(data)
                yield data
        finally:
            if was_blocking:
                # the descriptor may be shared with the parent shell
                try:
                    os.set_blocking(attachment.fd, True)
                except OSError as exc:
                    logger.debug(
                        "restore_blocking_failed", origin=self.origin, error=str(exc)
                    )

    def close(self, attachment: Attachment) -> None:
        if attachment.closed:
            return
        attachment.closed = True
        if attachment.owns_fd:
            os.close(attachment.fd)
        logger.debug(
            "source_detached", origin=self.origin, bytes_read=attachment.bytes_read
        )


class StdinSource(_FdSource):
    """
    Standard input: attachable exactly once per process.

    Reads the descriptor directly when stdin has one; a replaced `sys.stdin`
    without a descriptor (embedding, test runners) is read through its binary
    buffer instead.
    """

    origin = "stdin"
    reattachable = False

    def __init__(
        self,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        fd: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(chunk_size, clock)
        self._fd = fd
        self._stream: Optional[BinaryIO] = None
        self._attached = False

    def open(self) -> Attachment:
        if self._attached:
            raise SourceUnavailable(
                "standard input can only be attached once", source=self.origin
            )
        fd = self._fd
        if fd is None:
            try:
                fd = sys.stdin.fileno()
            except (AttributeError, ValueError, OSError):
                self._stream = getattr(sys.stdin, "buffer", None)
                if self._stream is None:
                    raise SourceUnavailable(
                        "standard input is not available", source=self.origin
                    )
                fd = -1
        self._attached = True
        # fd 0 stays open for the process; the attachment only borrows it.
        return self._attachment(fd, owns_fd=False)

    def read(self, attachment: Attachment) -> ReadResult:
        if self._stream is None:
            return super().read(attachment)
        if attachment.closed:
            raise ReadError("Attachment to stdin is closed")
        reader = getattr(self._stream, "read1", self._stream.read)
        try:
            data = reader(self.chunk_size)
        except (OSError, ValueError) as exc:
            raise ReadError(f"Read from stdin failed: {exc}") from exc
        if not data:
            return END_OF_STREAM
        attachment.bytes_read += len(data)
        return data

    def drain(self, attachment: Attachment, deadline: float) -> Iterator[bytes]:
        if self._stream is None:
            yield from super().drain(attachment, deadline)


class FifoSource(_FdSource):
    """Named pipe: each `open` blocks until a writer attaches."""

    def __init__(
        self,
        path: str | Path,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        create: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(chunk_size, clock)
        self.path = Path(path)
        self.origin = str(self.path)
        self.create = create

    def _ensure_fifo(self) -> None:
        if self.create and not os.path.lexists(self.path):
            try:
                os.mkfifo(self.path, FIFO_MODE)
                logger.info("fifo_created", path=self.origin)
            except FileExistsError:
                pass
            except OSError as exc:
                raise SourceUnavailable(
                    f"Cannot create named pipe {self.path}: {exc}", source=self.origin
                ) from exc

        try:
            mode = os.stat(self.path).st_mode
        except OSError as exc:
            raise SourceUnavailable(
                f"Named pipe {self.path} is not accessible: {exc}", source=self.origin
            ) from exc
        if not stat.S_ISFIFO(mode):
            raise SourceUnavailable(
                f"{self.path} is not a named pipe", source=self.origin
            )

    def open(self) -> Attachment:
        self._ensure_fifo()
        logger.debug("waiting_for_writer", path=self.origin)
        try:
            fd = os.open(self.path, os.O_RDONLY | getattr(os, "O_CLOEXEC", 0))
        except OSError as exc:
            raise SourceUnavailable(
                f"Cannot open named pipe {self.path}: {exc}", source=self.origin
            ) from exc
        try:
            return self._attachment(fd, owns_fd=True)
        except BaseException:
            # a shutdown signal can land before the attachment owns the fd
            os.close(fd)
            raise


def build_source(config: RunConfig) -> SourceReader:
    if config.source_path is None:
        return StdinSource(chunk_size=config.chunk_size)
    return FifoSource(
        config.source_path, chunk_size=config.chunk_size, create=config.create_fifo
    )


__all__ = [
    "Attachment",
    "SourceReader",
    "StdinSource",
    "FifoSource",
    "ReadResult",
    "build_source",
]
