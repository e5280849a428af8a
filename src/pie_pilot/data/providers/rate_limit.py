"""
Token-bucket rate limiting for provider requests.

Replaces fixed sleeps between calls when pies are fetched concurrently: each
provider owns one bucket shared by all worker threads.
"""

import threading
import time
from typing import Callable


class TokenBucketRateLimiter:
    """
    Thread-safe token bucket.

    Tokens refill continuously at ``rate`` per second up to ``capacity``.
    ``acquire()`` blocks until a token is available.
    """

    def __init__(
        self,
        rate: float,
        capacity: float | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the limiter.

        Args:
            rate: Tokens added per second; 0 disables limiting
            capacity: Burst size (defaults to max(1, rate))
            clock: Monotonic time source
            sleep: Sleep function, replaceable in tests
        """
        if rate < 0:
            raise ValueError(f"rate must be >= 0, got {rate}")
        self.rate = rate
        self.capacity = capacity if capacity is not None else max(1.0, rate)
        self._clock = clock
        self._sleep = sleep
        self._tokens = self.capacity
        self._updated_at = clock()
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self.rate > 0

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self._updated_at
        self._updated_at = now
        self._tokens = min(self.capacity, self._tokens + elapsed * self.rate)

    def try_acquire(self) -> bool:
        """Take a token without waiting; returns False if none is available."""
        if not self.enabled:
            return True
        with self._lock:
            self._refill()
            if self._tokens >= 1:
                self._tokens -= 1
                return True
            return False

    def acquire(self) -> float:
        """
        Block until a token is available and take it.

        Returns:
            Seconds spent waiting
        """
        if not self.enabled:
            return 0.0
        waited = 0.0
        while True:
            with self._lock:
                self._refill()
                if self._tokens >= 1:
                    self._tokens -= 1
                    return waited
                wait = (1 - self._tokens) / self.rate
            self._sleep(wait)
            waited += wait
