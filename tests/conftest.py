from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Callable, Iterator, List, Optional

import pytest

# Ensure src/ is on sys.path for local test runs without installation
PROJECT_ROOT = Path(__file__).resolve().parent.parent
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from rotator.config.config import RetryBackoff, RunConfig  # noqa: E402
from rotator.core.errors import ShutdownRequested, SourceUnavailable  # noqa: E402
from rotator.core.models import END_OF_STREAM  # noqa: E402
from rotator.source.reader import Attachment  # noqa: E402


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "unit: fast unit tests")
    config.addinivalue_line(
        "markers",
        "integration: tests that use real pipes, FIFOs or signals",
    )
    config.addinivalue_line("markers", "slow: slow-running tests")


posix_only = pytest.mark.skipif(
    sys.platform.startswith("win"), reason="named pipes and signals need POSIX"
)


class FakeClock:
    """Monotonic clock under test control."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class ScriptedSource:
    """
    In-memory source reader driven by a script.

    Each `open` consumes the next script step:
      - an exception instance is raised (e.g. SourceUnavailable);
      - a list is one writer session; its items are returned by `read`:
        bytes are chunks, exceptions are raised, callables are invoked (and
        skipped). After the last item `read` returns END_OF_STREAM.

    When the script is exhausted, `open` behaves like a blocked pipe open
    interrupted by SIGTERM if `engine` is set, otherwise it raises
    SourceUnavailable.
    """

    origin = "scripted"

    def __init__(
        self,
        script: List[Any],
        clock: Optional[Callable[[], float]] = None,
        reattachable: bool = True,
    ) -> None:
        self.script = list(script)
        self.clock = clock or (lambda: 0.0)
        self.reattachable = reattachable
        self.engine: Any = None
        self.open_calls = 0
        self.attachments: List[Attachment] = []
        self._sessions: dict[int, List[Any]] = {}

    @property
    def open_attachments(self) -> List[Attachment]:
        return [a for a in self.attachments if not a.closed]

    def open(self) -> Attachment:
        self.open_calls += 1
        if not self.script:
            if self.engine is not None:
                self.engine.stop()
                raise ShutdownRequested()
            raise SourceUnavailable("script exhausted", source=self.origin)

        step = self.script.pop(0)
        if isinstance(step, BaseException):
            raise step

        attachment = Attachment(
            fd=len(self.attachments) + 100,
            origin=self.origin,
            attached_at=self.clock(),
            owns_fd=False,
        )
        self.attachments.append(attachment)
        self._sessions[id(attachment)] = list(step)
        return attachment

    def read(self, attachment: Attachment) -> Any:
        items = self._sessions[id(attachment)]
        while items:
            item = items.pop(0)
            if callable(item):
                item()
                continue
            if isinstance(item, BaseException):
                raise item
            attachment.bytes_read += len(item)
            return item
        return END_OF_STREAM

    def drain(self, attachment: Attachment, deadline: float) -> Iterator[bytes]:
        items = self._sessions[id(attachment)]
        while items and self.clock() < deadline:
            item = items.pop(0)
            if isinstance(item, (bytes, bytearray)):
                attachment.bytes_read += len(item)
                yield bytes(item)

    def close(self, attachment: Attachment) -> None:
        attachment.closed = True


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_config(tmp_path: Path) -> Callable[..., RunConfig]:
    """Build a RunConfig writing under tmp_path/out with instant backoff."""

    def _make(**overrides: Any) -> RunConfig:
        data: dict[str, Any] = {
            "output_prefix": str(tmp_path / "out" / "cap"),
            "retry_backoff": RetryBackoff(initial=0.0, max=0.0, jitter=False),
            "shutdown_grace": 0.0,
        }
        if overrides.get("continue_read") or overrides.get("create_fifo"):
            data["source_path"] = tmp_path / "in.fifo"
        data.update(overrides)
        return RunConfig(**data)

    return _make


def output_files(directory: Path) -> List[Path]:
    return sorted(p for p in directory.iterdir() if p.is_file())


def read_all(directory: Path) -> bytes:
    return b"".join(p.read_bytes() for p in output_files(directory))
