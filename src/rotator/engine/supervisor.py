"""Daemon supervisor - reattachment budget, backoff and pid file lifecycle."""

from __future__ import annotations

import time
from pathlib import Path
from typing import Callable, Optional

from rotator.config.config import RetryBackoff, RunConfig
from rotator.core.constants import BACKOFF_WAIT_SLICE
from rotator.core.errors import SourceUnavailable
from rotator.monitoring.metrics import SOURCE_ATTACHMENTS, SOURCE_FAILURES
from rotator.source.reader import Attachment
from rotator.utils.logging import get_logger
from rotator.utils.pidfile import PidFile
from rotator.utils.retry import ExponentialBackoff

logger = get_logger(__name__)


class DaemonSupervisor:
    """
    Decides how long to wait before the engine attaches to the source again.

    Failures are counted while consecutive: an attach error, a read error, or
    a writer that left before `cooldown` seconds without sending anything. A
    writer session that lasted at least `cooldown` (or delivered data) resets
    both the counter and the backoff. When `max_restarts` is set and the
    counter exceeds it, the failure becomes terminal.
    """

    def __init__(
        self,
        backoff: Optional[RetryBackoff] = None,
        pid_file: Optional[str | Path] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.policy = backoff or RetryBackoff()
        self.backoff = ExponentialBackoff(
            initial=self.policy.initial,
            maximum=self.policy.max,
            multiplier=self.policy.multiplier,
            jitter=self.policy.jitter,
        )
        self.pid_file = PidFile(pid_file) if pid_file else None
        self.clock = clock
        self.failures = 0
        self.restarts = 0
        self._started = False

    @classmethod
    def from_config(
        cls, config: RunConfig, clock: Callable[[], float] = time.monotonic
    ) -> "DaemonSupervisor":
        return cls(config.retry_backoff, pid_file=config.pid_file, clock=clock)

    def start(self) -> None:
        """Take ownership of process-wide daemon state (pid file)."""
        if self._started:
            return
        if self.pid_file is not None:
            self.pid_file.acquire()
        self._started = True

    def stop(self) -> None:
        if not self._started:
            return
        if self.pid_file is not None:
            self.pid_file.release()
        self._started = False

    def on_attached(self, attachment: Attachment) -> None:
        SOURCE_ATTACHMENTS.inc()
        logger.debug("attachment_recorded", origin=attachment.origin)

    def on_failure(self, kind: str, error: Optional[BaseException] = None) -> float:
        """Count a failure and return the delay before the next attempt."""
        self.failures += 1
        SOURCE_FAILURES.labels(kind=kind).inc()

        budget = self.policy.max_restarts
        if budget is not None and self.failures > budget:
            raise SourceUnavailable(
                f"Source retry budget exhausted after {self.failures} consecutive "
                f"failures (last: {kind}: {error})"
            ) from error

        delay = self.backoff.next_delay()
        logger.warning(
            "reattach_scheduled",
            kind=kind,
            error=str(error) if error else None,
            failures=self.failures,
            retry_in=round(delay, 3),
        )
        return delay

    def on_detached(self, attachment: Attachment) -> float:
        """Writer went away (end-of-stream); return the delay before reattaching."""
        self.restarts += 1
        session = self.clock() - attachment.attached_at
        if session >= self.policy.cooldown or attachment.bytes_read > 0:
            self.failures = 0
            self.backoff.reset()
            return 0.0
        return self.on_failure("writer_flapping")

    def wait(self, delay: float, stopping: Callable[[], bool]) -> bool:
        """
        Sleep up to `delay`; True if shutdown was requested meanwhile.

        Plain sleeps, no locks: a signal handler may run in the middle of the
        wait (and raises out of `time.sleep` when the engine is interruptible).
        `stopping` is polled between slices for stops from other threads.
        """
        deadline = time.monotonic() + delay
        while not stopping():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            time.sleep(min(remaining, BACKOFF_WAIT_SLICE))
        return True


__all__ = ["DaemonSupervisor"]
