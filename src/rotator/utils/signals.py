"""Signal helpers for graceful shutdown."""

from __future__ import annotations

import logging
import signal
from typing import Any, Callable

from rotator.core.errors import ShutdownRequested

logger = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def _make_handler(
    callback: Callable[[], None], interruptible: Callable[[], bool]
) -> Callable[[int, Any], None]:
    def handler(signum: int, _frame: Any) -> None:
        logger.info("received signal, shutting down", extra={"signal": signum})
        callback()
        if interruptible():
            raise ShutdownRequested(signum)

    return handler


def setup_signal_handlers(on_stop: Any) -> dict[int, Any]:
    """
    Register SIGINT/SIGTERM handlers and return the previous ones.

    The `on_stop` object can provide a `stop` or `shutdown` method; otherwise
    the handler only logs the signal. When `on_stop.interruptible` is true at
    the time of the signal (the target is blocked opening, reading or backing
    off), the handler raises `ShutdownRequested` so the blocking call returns.
    """

    def _stop() -> None:
        for method_name in ("stop", "shutdown", "close"):
            method = getattr(on_stop, method_name, None)
            if callable(method):
                method()
                break

    def _interruptible() -> bool:
        return bool(getattr(on_stop, "interruptible", False))

    handler = _make_handler(_stop, _interruptible)
    previous = {}
    for sig in SHUTDOWN_SIGNALS:
        previous[sig] = signal.signal(sig, handler)
    return previous


def restore_signal_handlers(previous: dict[int, Any]) -> None:
    for sig, handler in previous.items():
        signal.signal(sig, handler)
