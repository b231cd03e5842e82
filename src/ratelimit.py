"""Rate limiting for NSX API calls."""

import logging
import os
import threading
import time
from contextlib import contextmanager
from typing import Generator

from metrics import RATE_LIMIT_WAIT_SECONDS
from models import NSXAPIError

logger = logging.getLogger(__name__)


class RateLimiter:
    """Thread-safe rate limiter shared by all reconcile workers.

    Bounds the number of NSX calls in flight and spaces calls out to an
    average requests-per-second rate, so a burst of reconciles after a
    restart does not flood the NSX manager.
    """

    def __init__(
        self,
        max_concurrent: int = 10,
        requests_per_second: float = 20.0,
        slot_timeout: float | None = None,
    ) -> None:
        """Initialize rate limiter.

        Args:
            max_concurrent: Maximum number of concurrent NSX calls
            requests_per_second: Maximum requests per second (averaged)
            slot_timeout: Seconds to wait for a free slot, None waits forever
        """
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self._semaphore = threading.BoundedSemaphore(max_concurrent)
        self._min_interval = 1.0 / requests_per_second if requests_per_second > 0 else 0
        self._next_slot = 0.0
        self._lock = threading.Lock()
        self._max_concurrent = max_concurrent
        self._requests_per_second = requests_per_second
        self._slot_timeout = slot_timeout

        logger.info(
            "NSX rate limiter initialized: max_concurrent=%d, requests_per_second=%.1f",
            max_concurrent,
            requests_per_second,
        )

    def _reserve_start(self) -> float:
        """Reserve the next start time and return how long to sleep for it."""
        with self._lock:
            now = time.monotonic()
            start = max(now, self._next_slot)
            self._next_slot = start + self._min_interval
            return start - now

    @contextmanager
    def acquire(self) -> Generator[None, None, None]:
        """Hold a rate limit slot for the duration of one NSX call.

        Usage:
            with rate_limiter.acquire():
                session.get(...)

        Raises:
            NSXAPIError: No slot became free within slot_timeout
        """
        wait_start = time.monotonic()
        if not self._semaphore.acquire(timeout=self._slot_timeout):
            raise NSXAPIError(
                f"No NSX call slot free after {self._slot_timeout:.1f}s"
            )
        try:
            delay = self._reserve_start()
            if delay > 0:
                time.sleep(delay)

            total_wait = time.monotonic() - wait_start
            if total_wait > 0.001:
                RATE_LIMIT_WAIT_SECONDS.observe(total_wait)

            yield
        finally:
            self._semaphore.release()

    def __repr__(self) -> str:
        return (
            f"RateLimiter(max_concurrent={self._max_concurrent}, "
            f"requests_per_second={self._requests_per_second})"
        )


# Global rate limiter instance (initialized lazily)
_rate_limiter: RateLimiter | None = None
_rate_limiter_lock = threading.Lock()


def get_rate_limiter() -> RateLimiter:
    """Get or create the global rate limiter.

    Configuration via environment variables:
        NSX_MAX_CONCURRENT_CALLS: Max concurrent NSX calls (default: 10)
        NSX_REQUESTS_PER_SECOND: Max requests/second (default: 20)
    """
    global _rate_limiter

    if _rate_limiter is None:
        with _rate_limiter_lock:
            if _rate_limiter is None:
                max_concurrent = int(os.environ.get("NSX_MAX_CONCURRENT_CALLS", "10"))
                requests_per_second = float(
                    os.environ.get("NSX_REQUESTS_PER_SECOND", "20")
                )
                _rate_limiter = RateLimiter(
                    max_concurrent=max_concurrent,
                    requests_per_second=requests_per_second,
                )

    return _rate_limiter
