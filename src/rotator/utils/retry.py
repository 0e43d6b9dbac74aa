"""Retry utilities: capped exponential backoff with jitter."""

import functools
import random
import time
from typing import Callable, Iterable, Optional, Tuple, Type, TypeVar, ParamSpec

import structlog

logger = structlog.get_logger(__name__)

P = ParamSpec("P")
R = TypeVar("R")


class ExponentialBackoff:
    """
    Delay sequence `initial * multiplier**n`, capped at `maximum`.

    With jitter each delay is scaled by a random factor in [0.5, 1.5] and
    then capped again, so the cap is never exceeded.
    """

    def __init__(
        self,
        initial: float,
        maximum: float,
        multiplier: float = 2.0,
        jitter: bool = True,
    ) -> None:
        self.initial = initial
        self.maximum = maximum
        self.multiplier = multiplier
        self.jitter = jitter
        self.attempt = 0

    def peek(self) -> float:
        """Delay the next call to `next_delay` would return, without jitter."""
        return min(self.maximum, self.initial * self.multiplier**self.attempt)

    def next_delay(self) -> float:
        wait = self.peek()
        self.attempt += 1
        if self.jitter:
            wait = min(self.maximum, wait * random.uniform(0.5, 1.5))
        return wait

    def reset(self) -> None:
        self.attempt = 0


def retry(
    *,
    max_attempts: int = 3,
    backoff_base: float = 2.0,
    exceptions: Iterable[Type[BaseException]] = (Exception,),
    jitter: bool = True,
    on_retry: Optional[Callable[[BaseException], None]] = None,
) -> Callable[[Callable[P, R]], Callable[P, R]]:
    """
    Decorator to retry blocking functions with exponential backoff.

    Args:
        max_attempts: Maximum number of attempts before giving up.
        backoff_base: Base for exponential backoff (wait = backoff_base ** attempt).
            Use 0 to retry immediately.
        exceptions: Exception types that trigger a retry.
        jitter: Whether to apply random jitter to backoff waits.
        on_retry: Called with the failure before each new attempt.
    """

    exc_tuple: Tuple[Type[BaseException], ...] = tuple(exceptions)

    def decorator(func: Callable[P, R]) -> Callable[P, R]:
        @functools.wraps(func)
        def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            attempt = 1
            while True:
                try:
                    return func(*args, **kwargs)
                except exc_tuple as exc:
                    if attempt >= max_attempts:
                        raise exc
                    wait = backoff_base**attempt if backoff_base else 0.0
                    if jitter:
                        wait *= random.uniform(0.5, 1.5)

                    logger.warning(
                        "retrying_operation",
                        function=func.__name__,
                        attempt=attempt,
                        max_attempts=max_attempts,
                        wait_seconds=wait,
                        error=str(exc),
                    )

                    if on_retry is not None:
                        on_retry(exc)
                    if wait > 0:
                        time.sleep(wait)
                    attempt += 1

        return wrapper

    return decorator


__all__ = ["ExponentialBackoff", "retry"]
