"""Rotation policy - deciding whether the next chunk starts a new file."""

from __future__ import annotations

from typing import Optional

from rotator.config.config import RotationTrigger
from rotator.core.models import OutputFile, RotationReason


class RotationPolicy:
    """
    Pure decision function over (bytes written, file age, trigger).

    Decisions are taken only when a chunk arrives, never on a timer: an idle
    stream keeps its current file until data resumes.

    Size trigger overshoot: chunks are never split, so a chunk larger than
    `max_bytes` is written whole into a fresh file, and the next chunk
    rotates again.
    """

    def __init__(self, trigger: Optional[RotationTrigger] = None) -> None:
        self.trigger = trigger or RotationTrigger()

    def reason(
        self, current: OutputFile, chunk_len: int, now: float
    ) -> Optional[RotationReason]:
        """Return why `current` must be rotated before the chunk, or None."""
        if current.is_empty:
            return None

        max_bytes = self.trigger.max_bytes
        if max_bytes is not None and current.bytes_written + chunk_len > max_bytes:
            return RotationReason.SIZE

        max_age = self.trigger.max_age
        if max_age is not None and now - current.opened_at >= max_age:
            return RotationReason.AGE

        return None

    def should_rotate(self, current: OutputFile, chunk_len: int, now: float) -> bool:
        return self.reason(current, chunk_len, now) is not None


__all__ = ["RotationPolicy"]
