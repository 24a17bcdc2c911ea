"""Tests for the shared rate limiter."""
import asyncio
from datetime import datetime, timedelta, timezone
import pytest
from repoaudit.infrastructure.rate_limit import RateLimiter


START = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Clock that only moves when something sleeps."""

    def __init__(self, now=START):
        self.now = now
        self.sleeps = []

    def __call__(self):
        return self.now

    async def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += timedelta(seconds=seconds)


def make_limiter(max_concurrency=2, clock=None):
    clock = clock or FakeClock()
    return RateLimiter(max_concurrency, clock=clock, sleep=clock.sleep), clock


def test_slot_decrements_remaining_optimistically():
    """Test the local decrement before headers arrive."""
    limiter, _ = make_limiter()
    
    async def scenario():
        async with limiter.slot():
            assert limiter.state.in_flight == 1
    
    asyncio.run(scenario())
    
    assert limiter.state.remaining == 4999
    assert limiter.state.in_flight == 0


def test_waits_for_reset_when_quota_exhausted():
    """Test that calls are held back until the reset time."""
    limiter, clock = make_limiter()
    limiter.state.remaining = 3
    limiter.state.reset_at = START + timedelta(seconds=30)
    
    async def scenario():
        async with limiter.slot():
            pass
    
    asyncio.run(scenario())
    
    assert clock.sleeps == [31.0]
    assert limiter.state.reset_at is None
    assert limiter.state.remaining == limiter.state.limit - 1


def test_no_wait_when_quota_available():
    """Test that healthy quota never sleeps."""
    limiter, clock = make_limiter()
    limiter.state.remaining = 500
    limiter.state.reset_at = START + timedelta(seconds=30)
    
    async def scenario():
        async with limiter.slot():
            pass
    
    asyncio.run(scenario())
    
    assert clock.sleeps == []


def test_update_from_headers_resynchronizes_state():
    """Test that response headers override the local estimate."""
    limiter, _ = make_limiter()
    reset = int((START + timedelta(minutes=10)).timestamp())
    
    asyncio.run(limiter.update_from_headers({
        "X-RateLimit-Remaining": "42",
        "X-RateLimit-Reset": str(reset),
        "X-RateLimit-Limit": "5000",
        "X-RateLimit-Resource": "core",
    }))
    
    assert limiter.state.remaining == 42
    assert limiter.state.reset_at == START + timedelta(minutes=10)
    assert limiter.state.limit == 5000


def test_update_from_headers_ignores_other_resource():
    """Test that search quota headers do not touch the core state."""
    limiter, _ = make_limiter()
    
    asyncio.run(limiter.update_from_headers({
        "X-RateLimit-Remaining": "1",
        "X-RateLimit-Reset": "1700000000",
        "X-RateLimit-Resource": "search",
    }))
    
    assert limiter.state.remaining == 5000
    assert limiter.state.reset_at is None


def test_update_from_headers_ignores_malformed_values():
    """Test that garbage headers leave the state alone."""
    limiter, _ = make_limiter()
    
    asyncio.run(limiter.update_from_headers({"X-RateLimit-Remaining": "lots"}))
    
    assert limiter.state.remaining == 5000


def test_pause_holds_back_new_requests():
    """Test Retry-After style pauses."""
    limiter, clock = make_limiter()
    
    async def scenario():
        await limiter.pause(20)
        async with limiter.slot():
            pass
    
    asyncio.run(scenario())
    
    assert clock.sleeps == [21.0]


def test_in_flight_never_exceeds_max_concurrency():
    """Test the concurrency cap under load."""
    limiter = RateLimiter(3)
    observed = []
    
    async def call():
        async with limiter.slot():
            observed.append(limiter.state.in_flight)
            await asyncio.sleep(0.01)
    
    async def scenario():
        await asyncio.gather(*(call() for _ in range(20)))
    
    asyncio.run(scenario())
    
    assert max(observed) <= 3
    assert limiter.peak_in_flight == 3
    assert limiter.state.in_flight == 0


def test_rejects_zero_concurrency():
    """Test constructor validation."""
    with pytest.raises(ValueError):
        RateLimiter(0)
