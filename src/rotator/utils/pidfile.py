"""Pid file handling for daemon mode."""

from __future__ import annotations

import errno
import os
from pathlib import Path
from typing import Optional

from rotator.core.errors import ConfigurationError
from rotator.utils.logging import get_logger

logger = get_logger(__name__)


def _process_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except OSError as exc:
        # EPERM: the process exists but belongs to someone else
        return exc.errno == errno.EPERM
    return True


class PidFile:
    """
    Exclusive pid file.

    `acquire` refuses to start while another live process holds the file and
    replaces a stale one; `release` removes it only if it still holds our pid.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self.pid: Optional[int] = None

    def read_pid(self) -> Optional[int]:
        try:
            text = self.path.read_text(encoding="ascii").strip()
        except FileNotFoundError:
            return None
        try:
            return int(text)
        except ValueError:
            return None

    def acquire(self) -> None:
        existing = self.read_pid()
        if existing is not None and existing != os.getpid() and _process_alive(existing):
            raise ConfigurationError(
                f"Pid file {self.path} is held by running process {existing}"
            )
        if self.path.exists():
            logger.warning("stale_pid_file_replaced", path=str(self.path), pid=existing)

        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        tmp.write_text(f"{os.getpid()}\n", encoding="ascii")
        os.replace(tmp, self.path)
        self.pid = os.getpid()
        logger.info("pid_file_written", path=str(self.path), pid=self.pid)

    def release(self) -> None:
        if self.pid is None:
            return
        if self.read_pid() == self.pid:
            self.path.unlink(missing_ok=True)
            logger.info("pid_file_removed", path=str(self.path))
        self.pid = None

    def __enter__(self) -> "PidFile":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


__all__ = ["PidFile"]
