"""
Output file naming.

Two schemes, both producing names that sort in creation order:

    sequence:   <prefix>.<seq>[ext]             e.g. capture.000042.log
    timestamp:  <prefix>.<YYYYmmddTHHMMSSffffff>[_NNN][ext]

seq is zero-padded to a fixed width; the timestamp is UTC with microsecond
resolution. A second name in the same microsecond (or after the clock
stepped backwards) gets the `_NNN` disambiguator. `_` sorts after `.`, so a
disambiguated name always sorts after its plain twin, with or without an
extension.
"""

from __future__ import annotations

import re
import threading
import time
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional, Protocol

from rotator.config.config import NamingScheme, RunConfig
from rotator.core.constants import (
    DEFAULT_SEQ_WIDTH,
    DISAMBIGUATOR_WIDTH,
    TIMESTAMP_FORMAT,
)
from rotator.core.errors import WriteError


class NameGenerator(Protocol):
    prefix: str

    def next_name(self) -> str:
        """Return a name sorting strictly after every name returned so far."""
        ...

    def matches(self, name: str) -> bool:
        """True if `name` belongs to this naming family."""
        ...

    def seed(self, existing: Iterable[str]) -> None:
        """Continue after the newest of `existing` (names from earlier runs)."""
        ...


def _validate_prefix(prefix: str) -> None:
    if not prefix:
        raise ValueError("prefix must be non-empty")
    if "/" in prefix or "\\" in prefix:
        raise ValueError("prefix may not contain path separators")


class SequenceNameGenerator:
    """`<prefix>.<zero padded seq><ext>`, starting at 0."""

    def __init__(
        self,
        prefix: str,
        width: int = DEFAULT_SEQ_WIDTH,
        extension: str = "",
        start: int = 0,
    ) -> None:
        _validate_prefix(prefix)
        if width < 1:
            raise ValueError("width must be >= 1")
        self.prefix = prefix
        self.width = width
        self.extension = extension
        self._next = start
        self._lock = threading.Lock()
        self._pattern = re.compile(
            rf"^{re.escape(prefix)}\.(\d{{{width}}}){re.escape(extension)}$"
        )

    def format(self, seq: int) -> str:
        return f"{self.prefix}.{seq:0{self.width}d}{self.extension}"

    def parse(self, name: str) -> Optional[int]:
        match = self._pattern.match(name)
        return int(match.group(1)) if match else None

    def matches(self, name: str) -> bool:
        return self._pattern.match(name) is not None

    def seed(self, existing: Iterable[str]) -> None:
        with self._lock:
            for name in existing:
                seq = self.parse(name)
                if seq is not None and seq >= self._next:
                    self._next = seq + 1

    def next_name(self) -> str:
        with self._lock:
            seq = self._next
            if seq >= 10**self.width:
                # Wider numbers would stop sorting after narrower ones.
                raise WriteError(
                    f"Sequence space exhausted for prefix {self.prefix!r} "
                    f"(width {self.width})"
                )
            self._next = seq + 1
        return self.format(seq)


class TimestampNameGenerator:
    """`<prefix>.<UTC timestamp>[_NNN]<ext>` captured at open time."""

    def __init__(
        self,
        prefix: str,
        extension: str = "",
        clock: Callable[[], int] = time.time_ns,
    ) -> None:
        _validate_prefix(prefix)
        self.prefix = prefix
        self.extension = extension
        self._clock = clock
        self._lock = threading.Lock()
        self._last_us = -1
        self._disambiguator = 0
        self._pattern = re.compile(
            rf"^{re.escape(prefix)}\.(\d{{8}}T\d{{12}})"
            rf"(?:_(\d{{{DISAMBIGUATOR_WIDTH}}}))?{re.escape(extension)}$"
        )

    def _epoch_us(self) -> int:
        return self._clock() // 1000

    @staticmethod
    def _format_ts(epoch_us: int) -> str:
        seconds, micros = divmod(epoch_us, 1_000_000)
        stamp = datetime.fromtimestamp(seconds, tz=timezone.utc)
        return f"{stamp.strftime(TIMESTAMP_FORMAT)}{micros:06d}"

    @staticmethod
    def _parse_ts(text: str) -> int:
        stamp = datetime.strptime(text[:15], TIMESTAMP_FORMAT).replace(
            tzinfo=timezone.utc
        )
        return int(stamp.timestamp()) * 1_000_000 + int(text[15:])

    def format(self, epoch_us: int, disambiguator: int = 0) -> str:
        name = f"{self.prefix}.{self._format_ts(epoch_us)}"
        if disambiguator:
            name += f"_{disambiguator:0{DISAMBIGUATOR_WIDTH}d}"
        return name + self.extension

    def matches(self, name: str) -> bool:
        return self._pattern.match(name) is not None

    def seed(self, existing: Iterable[str]) -> None:
        with self._lock:
            for name in existing:
                match = self._pattern.match(name)
                if not match:
                    continue
                epoch_us = self._parse_ts(match.group(1))
                disambiguator = int(match.group(2) or 0)
                if (epoch_us, disambiguator) > (self._last_us, self._disambiguator):
                    self._last_us = epoch_us
                    self._disambiguator = disambiguator

    def next_name(self) -> str:
        with self._lock:
            now_us = self._epoch_us()
            if now_us < self._last_us:
                # clock stepped back: stick to the last value
                now_us = self._last_us

            if now_us == self._last_us:
                self._disambiguator += 1
                if self._disambiguator >= 10**DISAMBIGUATOR_WIDTH:
                    now_us = self._last_us + 1
                    self._disambiguator = 0
            else:
                self._disambiguator = 0

            self._last_us = now_us
            return self.format(now_us, self._disambiguator)


def build_name_generator(config: RunConfig) -> NameGenerator:
    """Create the generator selected by the run configuration."""
    if config.naming is NamingScheme.TIMESTAMP:
        return TimestampNameGenerator(config.file_prefix, extension=config.extension)
    return SequenceNameGenerator(
        config.file_prefix, width=config.seq_width, extension=config.extension
    )


__all__ = [
    "NameGenerator",
    "SequenceNameGenerator",
    "TimestampNameGenerator",
    "build_name_generator",
]
