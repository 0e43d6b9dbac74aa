import os
import signal
import stat
import sys
import threading
import time
from pathlib import Path

import pytest

PROJECT_ROOT = Path(__file__).resolve().parent.parent
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from rotator.core.errors import (  # noqa: E402
    ReadError,
    ShutdownRequested,
    SourceUnavailable,
)
from rotator.core.models import END_OF_STREAM, EngineState  # noqa: E402
from rotator.engine.copy_loop import CopyEngine  # noqa: E402
from rotator.source.reader import FifoSource, StdinSource, build_source  # noqa: E402
from rotator.utils.signals import (  # noqa: E402
    restore_signal_handlers,
    setup_signal_handlers,
)

from conftest import output_files, posix_only, read_all  # noqa: E402

WAIT_TIMEOUT = 10.0
FINISHED = (EngineState.DRAINING, EngineState.STOPPED)


def _wait_for(predicate, timeout=WAIT_TIMEOUT):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


def _write_fifo(path: Path, payload: bytes) -> None:
    with open(path, "wb") as f:
        f.write(payload)


def _poke_until(path: Path, done) -> None:
    """Connect and leave as a writer until `done()`, waking a blocked reader."""
    while not done():
        try:
            fd = os.open(path, os.O_WRONLY | os.O_NONBLOCK)
        except OSError:
            # no reader yet
            time.sleep(0.01)
            continue
        os.close(fd)
        time.sleep(0.01)


@pytest.fixture
def pipe():
    read_fd, write_fd = os.pipe()
    fds = {"r": read_fd, "w": write_fd}
    yield fds
    for fd in fds.values():
        try:
            os.close(fd)
        except OSError:
            pass


@pytest.mark.unit
def test_stdin_reads_chunks_until_end_of_stream(pipe):
    os.write(pipe["w"], b"hello world")
    os.close(pipe.pop("w"))
    source = StdinSource(chunk_size=4, fd=pipe["r"])

    attachment = source.open()
    chunks = []
    while True:
        data = source.read(attachment)
        if data is END_OF_STREAM:
            break
        chunks.append(data)
    source.close(attachment)

    assert chunks == [b"hell", b"o wo", b"rld"]
    assert attachment.bytes_read == 11
    # the descriptor is borrowed, not closed
    os.fstat(pipe["r"])


@pytest.mark.unit
def test_stdin_cannot_be_reattached(pipe):
    source = StdinSource(fd=pipe["r"])
    source.open()

    assert source.reattachable is False
    with pytest.raises(SourceUnavailable):
        source.open()


@pytest.mark.unit
def test_read_after_close_is_read_error(pipe):
    source = StdinSource(fd=pipe["r"])
    attachment = source.open()
    source.close(attachment)

    with pytest.raises(ReadError):
        source.read(attachment)


@pytest.mark.unit
def test_drain_returns_buffered_bytes_without_blocking(pipe):
    os.write(pipe["w"], b"buffered")
    source = StdinSource(chunk_size=3, fd=pipe["r"])
    attachment = source.open()

    drained = b"".join(source.drain(attachment, time.monotonic() + 5))

    assert drained == b"buffered"
    assert os.get_blocking(pipe["r"])


@pytest.mark.unit
def test_fifo_missing_path_is_unavailable(tmp_path):
    with pytest.raises(SourceUnavailable) as exc_info:
        FifoSource(tmp_path / "missing").open()
    assert exc_info.value.exit_code == 3


@pytest.mark.unit
def test_regular_file_is_not_a_fifo(tmp_path):
    regular = tmp_path / "plain"
    regular.write_bytes(b"")

    with pytest.raises(SourceUnavailable, match="not a named pipe"):
        FifoSource(regular).open()


@pytest.mark.unit
def test_build_source_follows_config(tmp_path, make_config):
    assert isinstance(build_source(make_config()), StdinSource)
    fifo = build_source(make_config(source_path=tmp_path / "p", create_fifo=True))
    assert isinstance(fifo, FifoSource)
    assert fifo.create is True


@posix_only
@pytest.mark.unit
def test_fifo_open_closes_descriptor_when_interrupted(tmp_path, monkeypatch):
    path = tmp_path / "in.fifo"
    os.mkfifo(path)
    keeper = os.open(path, os.O_RDONLY | os.O_NONBLOCK)
    writer = os.open(path, os.O_WRONLY | os.O_NONBLOCK)
    source = FifoSource(path)

    real_open, real_close = os.open, os.close
    opened: list[int] = []
    closed: list[int] = []

    def recording_open(target, flags, *args):
        fd = real_open(target, flags, *args)
        if Path(target) == path:
            opened.append(fd)
        return fd

    def recording_close(fd):
        closed.append(fd)
        real_close(fd)

    def interrupted(fd, owns_fd):
        raise ShutdownRequested()

    monkeypatch.setattr(os, "open", recording_open)
    monkeypatch.setattr(os, "close", recording_close)
    monkeypatch.setattr(source, "_attachment", interrupted)
    try:
        with pytest.raises(ShutdownRequested):
            source.open()
    finally:
        monkeypatch.undo()
        os.close(writer)
        os.close(keeper)

    assert len(opened) == 1
    assert opened[0] in closed


@posix_only
@pytest.mark.integration
def test_fifo_reattaches_to_successive_writers(tmp_path):
    path = tmp_path / "in.fifo"
    source = FifoSource(path, chunk_size=1024, create=True)
    payloads = [b"first writer", b"second writer"]
    reader_ready = [threading.Event() for _ in payloads]

    def writers():
        for payload, ready in zip(payloads, reader_ready):
            ready.wait(WAIT_TIMEOUT)
            _write_fifo(path, payload)

    thread = threading.Thread(target=writers, daemon=True)
    # the FIFO must exist before the writer opens it
    source._ensure_fifo()
    assert stat.S_ISFIFO(os.stat(path).st_mode)
    thread.start()

    received = []
    for ready in reader_ready:
        ready.set()
        attachment = source.open()
        data = b""
        while True:
            chunk = source.read(attachment)
            if chunk is END_OF_STREAM:
                break
            data += chunk
        source.close(attachment)
        received.append(data)

    thread.join(WAIT_TIMEOUT)
    assert received == payloads


@posix_only
@pytest.mark.integration
def test_engine_continues_across_writer_restarts(tmp_path, make_config):
    path = tmp_path / "in.fifo"
    os.mkfifo(path)
    config = make_config(daemon=True, continue_read=True, source_path=path)
    engine = CopyEngine(config)

    def writers():
        _write_fifo(path, b"alpha-")
        _wait_for(
            lambda: engine.stats.attachments == 1
            and engine.state is EngineState.ATTACHING
        )
        _write_fifo(path, b"beta")
        _wait_for(
            lambda: engine.stats.attachments == 2
            and engine.state is EngineState.ATTACHING
        )
        engine.stop()
        _poke_until(path, lambda: engine.state in FINISHED)

    thread = threading.Thread(target=writers, daemon=True)
    thread.start()
    result = engine.run()
    thread.join(WAIT_TIMEOUT)

    assert result.exit_code == 0
    assert result.stats.attachments >= 2
    assert result.stats.rotations == 0
    assert read_all(tmp_path / "out") == b"alpha-beta"
    assert len(output_files(tmp_path / "out")) == 1


@posix_only
@pytest.mark.integration
def test_sigterm_interrupts_blocked_pipe_open(tmp_path, make_config):
    path = tmp_path / "in.fifo"
    os.mkfifo(path)
    config = make_config(daemon=True, continue_read=True, source_path=path)
    engine = CopyEngine(config)
    main_thread = threading.main_thread().ident

    def terminator():
        if _wait_for(
            lambda: engine.interruptible and engine.state is EngineState.ATTACHING
        ):
            time.sleep(0.05)
            signal.pthread_kill(main_thread, signal.SIGTERM)
        else:
            engine.stop()
            _poke_until(path, lambda: engine.state in FINISHED)

    previous = setup_signal_handlers(engine)
    try:
        thread = threading.Thread(target=terminator, daemon=True)
        thread.start()
        result = engine.run()
        thread.join(WAIT_TIMEOUT)
    finally:
        restore_signal_handlers(previous)

    assert result.exit_code == 0
    assert result.stats.attachments == 0
    assert engine.stopping
    assert [f.read_bytes() for f in output_files(tmp_path / "out")] == [b""]
