"""Admission control for the bulk import pipeline.

Two independent primitives: a token bucket bounding the *rate* of attempts
and a counting semaphore bounding how many run *at once*.
"""
import threading
import time
from typing import Callable, Optional

from notifyqueue.errors import ImportCancelledError, InvalidInputError


def refill(tokens: float, elapsed_s: float, rate: float, burst: int) -> float:
    """Tokens after `elapsed_s` seconds of refill, capped at `burst`."""
    if elapsed_s < 0:
        elapsed_s = 0.0
    return min(float(burst), tokens + elapsed_s * rate)


def wait_for_deficit(tokens: float, rate: float) -> float:
    """Seconds until the bucket climbs back to zero from `tokens`."""
    if tokens >= 0:
        return 0.0
    return -tokens / rate


class TokenBucket:
    """Thread-safe token bucket.

    Each caller reserves its token up front, so the balance may go negative;
    the caller then sleeps off its own share of the deficit. Reservations are
    handed out in arrival order and a cancelled wait gives its token back.
    """

    def __init__(self, rate: float, burst: int, clock: Callable[[], float] = time.monotonic):
        if rate <= 0 or burst <= 0:
            raise InvalidInputError(f"rate and burst must be positive: {rate}/{burst}")
        self.rate = float(rate)
        self.burst = int(burst)
        self._clock = clock
        self._tokens = float(burst)
        self._last = clock()
        self._lock = threading.Lock()

    @property
    def tokens(self) -> float:
        with self._lock:
            self._advance()
            return self._tokens

    def reserve(self) -> float:
        """Take one token now and return how long to wait before using it."""
        with self._lock:
            self._advance()
            self._tokens -= 1
            return wait_for_deficit(self._tokens, self.rate)

    def cancel_reservation(self):
        with self._lock:
            self._advance()
            self._tokens = min(float(self.burst), self._tokens + 1)

    def acquire(self, cancel: Optional[threading.Event] = None) -> None:
        """Block until a token is available, or raise ImportCancelledError."""
        if cancel is not None and cancel.is_set():
            raise ImportCancelledError("rate limit: cancelled")
        delay = self.reserve()
        if delay <= 0:
            return
        if cancel is None:
            time.sleep(delay)
            return
        if cancel.wait(delay):
            self.cancel_reservation()
            raise ImportCancelledError("rate limit: cancelled")

    def _advance(self):
        now = self._clock()
        self._tokens = refill(self._tokens, now - self._last, self.rate, self.burst)
        self._last = now


class ConcurrencyLimiter:
    """Counting semaphore that also reports how many slots are in use."""

    POLL_SECONDS = 0.05

    def __init__(self, limit: int):
        if limit <= 0:
            raise InvalidInputError(f"concurrency must be positive: {limit}")
        self.limit = limit
        self._sem = threading.BoundedSemaphore(limit)
        self._count_lock = threading.Lock()
        self.in_flight = 0
        self.peak = 0

    def acquire(self, cancel: Optional[threading.Event] = None) -> bool:
        """Wait for a free slot. Returns False if `cancel` fires first."""
        while True:
            if cancel is not None and cancel.is_set():
                return False
            timeout = None if cancel is None else self.POLL_SECONDS
            if self._sem.acquire(timeout=timeout):
                break
        with self._count_lock:
            self.in_flight += 1
            self.peak = max(self.peak, self.in_flight)
        return True

    def release(self):
        with self._count_lock:
            self.in_flight -= 1
        self._sem.release()
