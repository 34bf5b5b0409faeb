"""
Token bucket throttle for apply calls.

Cloud provider APIs rate limit mutations. When the executor applies
independent changes concurrently, the applier can be wrapped with a
``TokenBucketRateLimiter`` so the overall call rate stays under the
provider's limit while short bursts are still allowed.

Usage:
    from driftfix.rate_limiter import RateLimitConfig, TokenBucketRateLimiter

    limiter = TokenBucketRateLimiter(
        RateLimitConfig(requests_per_minute=30, burst_size=5)
    )
    if limiter.acquire(timeout=60.0):
        applier(change)
"""

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from driftfix.logging_config import get_logger, log_with_context

logger = get_logger(__name__)


@dataclass(frozen=True)
class RateLimitConfig:
    """
    Configuration for rate limiting.

    Attributes:
        requests_per_minute: Sustained rate allowed
        burst_size: Tokens available at once
    """

    requests_per_minute: int
    burst_size: int = 1

    def __post_init__(self) -> None:
        if self.requests_per_minute < 1:
            raise ValueError("requests_per_minute must be at least 1")
        if self.burst_size < 1:
            raise ValueError("burst_size must be at least 1")


class TokenBucketRateLimiter:
    """
    Thread-safe token bucket.

    Tokens refill continuously at ``requests_per_minute / 60`` per second
    up to ``burst_size``. Each acquire consumes one token.

    Attributes:
        rate: Tokens added per second
        capacity: Maximum tokens in the bucket
        tokens: Current token count
    """

    def __init__(
        self,
        config: RateLimitConfig,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        """
        Initialize rate limiter.

        Args:
            config: Rate and burst configuration
            clock: Monotonic clock, injectable for tests
            sleep: Sleep function, injectable for tests
        """
        self.rate: float = config.requests_per_minute / 60.0
        self.capacity: float = float(config.burst_size)
        self.tokens: float = float(config.burst_size)
        self._clock = clock
        self._sleep = sleep
        self._last_update: float = clock()
        self._lock: threading.Lock = threading.Lock()

        log_with_context(
            logger,
            "debug",
            "Initialized rate limiter",
            requests_per_minute=config.requests_per_minute,
            burst_size=config.burst_size,
        )

    def _refill(self) -> None:
        # Caller holds the lock
        now = self._clock()
        elapsed = now - self._last_update
        self.tokens = min(self.capacity, self.tokens + elapsed * self.rate)
        self._last_update = now

    def try_acquire(self) -> bool:
        """
        Take a token if one is available, without blocking.

        Returns:
            True if a token was taken
        """
        with self._lock:
            self._refill()
            if self.tokens >= 1.0:
                self.tokens -= 1.0
                return True
            return False

    def acquire(self, timeout: float = 60.0) -> bool:
        """
        Take a token, waiting up to ``timeout`` seconds for one.

        Args:
            timeout: Maximum seconds to wait

        Returns:
            True if a token was taken, False on timeout
        """
        deadline = self._clock() + timeout

        while True:
            with self._lock:
                self._refill()
                if self.tokens >= 1.0:
                    self.tokens -= 1.0
                    return True
                wait_time = (1.0 - self.tokens) / self.rate

            if self._clock() + wait_time > deadline:
                log_with_context(
                    logger,
                    "warning",
                    "Rate limit acquire timeout",
                    timeout=timeout,
                    wait_time=wait_time,
                )
                return False

            self._sleep(min(wait_time, 0.1))

    def get_wait_time(self) -> float:
        """Seconds until a token is available (0 if available now)."""
        with self._lock:
            self._refill()
            if self.tokens >= 1.0:
                return 0.0
            return (1.0 - self.tokens) / self.rate
