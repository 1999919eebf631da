"""
Call-rate helpers shared by network-facing collaborators.

- KeyedThrottle:       minimum interval per key; inside the window the
                       last cached result is returned instead of calling
- retry_with_backoff:  capped exponential backoff on TransientError,
                       AuthorizationError propagates immediately
- OperationGuard:      in-flight counter; overlapping requests are
                       skipped, never queued
"""

import logging
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Hashable, Iterator, Optional, Tuple, TypeVar

from .exceptions import AuthorizationError, TransientError


logger = logging.getLogger(__name__)

T = TypeVar("T")


class KeyedThrottle:
    """Fixed-window rate limiter per key with last-result caching."""

    def __init__(self, min_interval: float, clock: Callable[[], float] = time.monotonic):
        self.min_interval = min_interval
        self._clock = clock
        self._entries: Dict[Hashable, Tuple[float, Any]] = {}

    def ready(self, key: Hashable) -> bool:
        """True when a fresh call for key is allowed."""
        entry = self._entries.get(key)
        return entry is None or self._clock() - entry[0] >= self.min_interval

    def cached(self, key: Hashable) -> Optional[Any]:
        entry = self._entries.get(key)
        return entry[1] if entry else None

    def call(self, key: Hashable, func: Callable[[], T]) -> T:
        """Call func unless key is inside its window; then return the cached result."""
        if not self.ready(key):
            return self._entries[key][1]
        result = func()
        self._entries[key] = (self._clock(), result)
        return result

    def record(self, key: Hashable, result: Any) -> None:
        """Store a result obtained outside call()."""
        self._entries[key] = (self._clock(), result)

    def reset(self, key: Optional[Hashable] = None) -> None:
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay before retry number `attempt` (1-based): base, 2*base, 4*base ... capped."""
    return min(base_delay * (2 ** (attempt - 1)), max_delay)


def retry_with_backoff(
    func: Callable[[], T],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 5.0,
    sleep: Callable[[float], None] = time.sleep,
    log: Optional[logging.Logger] = None,
) -> T:
    """
    Call func, retrying TransientError with capped exponential backoff.

    AuthorizationError and any other exception propagate on first failure.
    The last TransientError propagates once attempts are exhausted.
    """
    log = log or logger
    attempt = 1
    while True:
        try:
            return func()
        except AuthorizationError:
            raise
        except TransientError as e:
            if attempt >= max_attempts:
                log.error(f"Giving up after {attempt} attempts: {e}")
                raise
            delay = backoff_delay(attempt, base_delay, max_delay)
            log.warning(f"Attempt {attempt}/{max_attempts} failed ({e}), retrying in {delay:.1f}s")
            sleep(delay)
            attempt += 1


class OperationGuard:
    """Reentrancy guard for heavy recomputation."""

    def __init__(self, name: str):
        self.name = name
        self._in_flight = 0
        self.skipped = 0

    @property
    def busy(self) -> bool:
        return self._in_flight > 0

    @contextmanager
    def hold(self) -> Iterator[bool]:
        """Yield True when the guard was acquired, False when skipped."""
        if self._in_flight > 0:
            self.skipped += 1
            logger.debug(f"{self.name} already in flight, skipping")
            yield False
            return

        self._in_flight += 1
        try:
            yield True
        finally:
            self._in_flight -= 1
