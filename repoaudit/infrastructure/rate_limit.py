"""Shared throttle for GitHub API calls.

One RateLimiter owns one RateLimitState. It bounds the number of in-flight
requests with a semaphore and holds new requests back while the remaining
quota is exhausted. Every state change goes through this class under a
single lock.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Awaitable, Callable, Mapping, Optional
from repoaudit.domain.models import RateLimitState


logger = logging.getLogger(__name__)

# GitHub's authenticated REST quota; replaced by real headers after one call
DEFAULT_RATE_LIMIT = 5000

# Stop issuing requests once this few calls remain before reset
RATE_LIMIT_FLOOR = 10

RESET_BUFFER_SECONDS = 1.0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RateLimiter:
    """Concurrency cap plus quota tracking for one API rate-limit resource."""

    def __init__(
        self,
        max_concurrency: int,
        resource: str = "core",
        floor: int = RATE_LIMIT_FLOOR,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize the limiter.

        Args:
            max_concurrency: Maximum simultaneous in-flight requests
            resource: GitHub rate-limit resource name ("core", "search", ...)
            floor: Remaining-quota level at which new requests wait for reset
            clock: Returns the current UTC time
            sleep: Coroutine used to wait
        """
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.resource = resource
        self.state = RateLimitState(
            remaining=DEFAULT_RATE_LIMIT,
            limit=DEFAULT_RATE_LIMIT,
            reset_at=None,
            max_concurrency=max_concurrency,
        )
        self._floor = floor
        self._clock = clock
        self._sleep = sleep
        self._slots = asyncio.Semaphore(max_concurrency)
        self._lock = asyncio.Lock()
        self._paused_until: Optional[datetime] = None
        self.peak_in_flight = 0

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        """Hold one request slot for the duration of an API call."""
        async with self._slots:
            await self._wait_for_quota()
            async with self._lock:
                self.state.in_flight += 1
                self.state.remaining = max(0, self.state.remaining - 1)
                self.peak_in_flight = max(self.peak_in_flight, self.state.in_flight)
            try:
                yield
            finally:
                async with self._lock:
                    self.state.in_flight -= 1

    async def _wait_for_quota(self) -> None:
        """Sleep until the quota resets or a pause expires."""
        while True:
            async with self._lock:
                now = self._clock()
                wait_until = None
                if self._paused_until and self._paused_until > now:
                    wait_until = self._paused_until
                elif (
                    self.state.remaining <= self._floor
                    and self.state.reset_at is not None
                ):
                    if self.state.reset_at > now:
                        wait_until = self.state.reset_at
                    else:
                        # Reset time passed; assume a fresh window until headers say otherwise
                        self.state.remaining = self.state.limit
                        self.state.reset_at = None
                if wait_until is None:
                    return
                wait_time = (wait_until - now).total_seconds() + RESET_BUFFER_SECONDS

            logger.warning(
                f"Rate limit for '{self.resource}' nearly exhausted. Waiting {wait_time:.0f} "
                f"seconds until {wait_until.isoformat()}"
            )
            await self._sleep(wait_time)

    async def update_from_headers(self, headers: Mapping[str, str]) -> None:
        """Resynchronise the state from X-RateLimit-* response headers.

        Headers for a different rate-limit resource are ignored.
        """
        resource = headers.get("X-RateLimit-Resource")
        if resource and resource != self.resource:
            return
        remaining = headers.get("X-RateLimit-Remaining")
        if remaining is None:
            return

        try:
            remaining_value = int(remaining)
            reset = headers.get("X-RateLimit-Reset")
            reset_at = datetime.fromtimestamp(int(reset), tz=timezone.utc) if reset else None
            limit = headers.get("X-RateLimit-Limit")
            limit_value = int(limit) if limit else None
        except ValueError:
            logger.debug(f"Ignoring malformed rate-limit headers: {dict(headers)}")
            return

        async with self._lock:
            self.state.remaining = remaining_value
            if reset_at is not None:
                self.state.reset_at = reset_at
            if limit_value is not None:
                self.state.limit = limit_value

        logger.debug(
            f"Rate limit '{self.resource}' remaining: {remaining_value}, "
            f"resets at: {reset_at}"
        )

    async def pause(self, seconds: float) -> None:
        """Hold back every new request for the given number of seconds."""
        async with self._lock:
            until = self._clock() + timedelta(seconds=seconds)
            if self._paused_until is None or until > self._paused_until:
                self._paused_until = until
        logger.warning(f"Pausing '{self.resource}' requests for {seconds:.0f} seconds")
