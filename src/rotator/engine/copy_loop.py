"""
Copy loop - drives source -> rotation policy -> file sink.

State machine:

    ATTACHING -> READING <-> ROTATING
        ^           |
        +-----------+  (daemon + continue_read: writer detached / read error)
                    |
                    v
                DRAINING -> STOPPED

A shutdown request is honoured between operations. It interrupts only the
blocking waits (pipe open, read, backoff); a chunk write always completes.
"""

from __future__ import annotations

import time
from collections import deque
from contextlib import contextmanager
from typing import Callable, Deque, Iterator, Optional, Union

from rotator.config.config import RunConfig, WriteErrorPolicy
from rotator.core.constants import EXIT_OK, STATE_HISTORY_SIZE
from rotator.core.errors import (
    ReadError,
    RotatorError,
    ShutdownRequested,
    SourceUnavailable,
    WriteError,
)
from rotator.core.models import (
    END_OF_STREAM,
    EngineResult,
    EngineState,
    EngineStats,
    _EndOfStream,
)
from rotator.core.policy import RotationPolicy
from rotator.core.sink import FileSinkManager
from rotator.engine.supervisor import DaemonSupervisor
from rotator.monitoring.metrics import DISCARDED_BYTES, ENGINE_STATE, ROTATIONS
from rotator.source.reader import Attachment, SourceReader, build_source
from rotator.utils.logging import get_logger, log_context

logger = get_logger(__name__)


class CopyEngine:
    """Copies one byte stream into rotated output files."""

    def __init__(
        self,
        config: RunConfig,
        source: Optional[SourceReader] = None,
        sink: Optional[FileSinkManager] = None,
        policy: Optional[RotationPolicy] = None,
        supervisor: Optional[DaemonSupervisor] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self.clock = clock
        self.source = source or build_source(config)
        self.sink = sink or FileSinkManager.from_config(config, clock=clock)
        self.policy = policy or RotationPolicy(config.trigger)
        self.supervisor = supervisor or DaemonSupervisor.from_config(config, clock=clock)

        self.stats = EngineStats()
        self.state = EngineState.STOPPED
        # most recent transitions only
        self.state_history: Deque[EngineState] = deque(maxlen=STATE_HISTORY_SIZE)

        # set from signal handlers, so it must not take a lock
        self._stop_requested = False
        self._interruptible = False
        self._attachment: Optional[Attachment] = None
        self._pending: Optional[Union[bytes, _EndOfStream]] = None
        self._sink_failed = False

    # -- control -----------------------------------------------------------

    @property
    def interruptible(self) -> bool:
        """True while blocked in a pipe open, a read or a backoff wait."""
        return self._interruptible

    @property
    def stopping(self) -> bool:
        return self._stop_requested

    def stop(self) -> None:
        """Request an orderly shutdown (safe to call from a signal handler)."""
        self._stop_requested = True

    @contextmanager
    def _blocking(self) -> Iterator[None]:
        if self._stop_requested:
            raise ShutdownRequested()
        self._interruptible = True
        try:
            yield
        finally:
            self._interruptible = False

    def _set_state(self, state: EngineState) -> None:
        self.state = state
        self.state_history.append(state)
        for candidate in EngineState:
            ENGINE_STATE.labels(state=candidate.value).set(
                1 if candidate is state else 0
            )
        logger.debug("engine_state", state=state.value)

    # -- main loop ---------------------------------------------------------

    def run(self) -> EngineResult:
        """Run until end-of-stream, shutdown or a terminal error."""
        error: Optional[RotatorError] = None
        try:
            self.supervisor.start()
            self._open_sink()
            self._loop()
        except ShutdownRequested:
            logger.info("shutdown_requested", state=self.state.value)
        except RotatorError as exc:
            error = exc
        finally:
            drain_error = self._drain()
            if error is None:
                error = drain_error
            self.supervisor.stop()
            self._set_state(EngineState.STOPPED)

        exit_code = error.exit_code if error is not None else EXIT_OK
        logger.info(
            "engine_stopped",
            exit_code=exit_code,
            bytes_written=self.stats.bytes_written,
            rotations=self.stats.rotations,
            attachments=self.stats.attachments,
            discarded_bytes=self.stats.discarded_bytes,
        )
        return EngineResult(exit_code=exit_code, stats=self.stats, error=error)

    def _open_sink(self) -> None:
        current = self.sink.open()
        self.stats.record_file(current.name)

    def _loop(self) -> None:
        while not self._stop_requested:
            attachment = self._attach()
            if attachment is None:
                return

            try:
                with log_context(
                    source=attachment.origin, attachment=self.stats.attachments
                ):
                    ended = self._pump(attachment)
            except ReadError as exc:
                self._release()
                if not self.config.daemon or not self.source.reattachable:
                    raise
                self.stats.source_failures += 1
                delay = self.supervisor.on_failure("read_error", exc)
                self._backoff(delay)
                continue

            if not ended:
                return

            self._release()
            logger.info(
                "end_of_stream",
                source=attachment.origin,
                bytes_read=attachment.bytes_read,
            )
            if not self.config.continue_read:
                return

            delay = self.supervisor.on_detached(attachment)
            if delay > 0:
                self.stats.source_failures += 1
                self._backoff(delay)

    def _attach(self) -> Optional[Attachment]:
        self._set_state(EngineState.ATTACHING)
        while not self._stop_requested:
            try:
                with self._blocking():
                    self._attachment = self.source.open()
            except SourceUnavailable as exc:
                if not self.config.daemon or not self.source.reattachable:
                    raise
                self.stats.source_failures += 1
                delay = self.supervisor.on_failure("unavailable", exc)
                self._backoff(delay)
                continue

            attachment = self._attachment
            self.stats.attachments += 1
            self.supervisor.on_attached(attachment)
            logger.info(
                "source_attached",
                source=attachment.origin,
                attachment=self.stats.attachments,
            )
            return attachment
        return None

    def _pump(self, attachment: Attachment) -> bool:
        """Copy chunks until end-of-stream (True) or shutdown (False)."""
        self._set_state(EngineState.READING)
        while not self._stop_requested:
            with self._blocking():
                self._pending = self.source.read(attachment)
            data, self._pending = self._pending, None
            if data is END_OF_STREAM:
                return True
            self._handle_chunk(data)
        return False

    def _backoff(self, delay: float) -> None:
        with self._blocking():
            self.supervisor.wait(delay, lambda: self._stop_requested)

    # -- chunk handling ----------------------------------------------------

    def _handle_chunk(self, data: bytes) -> None:
        if self._sink_failed:
            self._discard(data)
            return

        try:
            current = self.sink.current_sink()
            reason = self.policy.reason(current, len(data), self.clock())
            if reason is not None:
                resume_state = self.state
                self._set_state(EngineState.ROTATING)
                try:
                    rotated = self.sink.rotate()
                finally:
                    self._set_state(resume_state)
                self.stats.rotations += 1
                self.stats.record_file(rotated.name)
                ROTATIONS.labels(reason=reason.value).inc()
                logger.info(
                    "rotation_triggered",
                    reason=reason.value,
                    previous_bytes=current.bytes_written,
                    next_chunk=len(data),
                    file=rotated.name,
                )
            self.sink.write(data)
        except WriteError as exc:
            if self.config.on_write_error is not WriteErrorPolicy.DISCARD:
                raise
            logger.error(
                "sink_failed_discarding",
                error=str(exc),
                path=exc.path,
            )
            self._sink_failed = True
            self._discard(data)
            return

        self.stats.record_chunk(len(data))
        logger.debug("chunk_written", size=len(data))

    def _discard(self, data: bytes) -> None:
        self.stats.discarded_bytes += len(data)
        DISCARDED_BYTES.inc(len(data))

    # -- shutdown ----------------------------------------------------------

    def _drain(self) -> Optional[RotatorError]:
        """Flush what is safe to flush, then release every resource."""
        self._set_state(EngineState.DRAINING)
        error: Optional[RotatorError] = None
        try:
            pending, self._pending = self._pending, None
            if pending:
                self._handle_chunk(pending)

            attachment = self._attachment
            grace = self.config.shutdown_grace
            if (
                attachment is not None
                and self._stop_requested
                and grace > 0
                and self.sink.is_open
            ):
                deadline = self.clock() + grace
                for data in self.source.drain(attachment, deadline):
                    self._handle_chunk(data)
        except WriteError as exc:
            error = exc
        finally:
            self._release()
            try:
                self.sink.close()
            except WriteError as exc:
                error = error or exc
        return error

    def _release(self) -> None:
        attachment, self._attachment = self._attachment, None
        if attachment is None:
            return
        try:
            self.source.close(attachment)
        except OSError as exc:
            logger.warning(
                "source_close_failed", source=attachment.origin, error=str(exc)
            )


__all__ = ["CopyEngine"]
