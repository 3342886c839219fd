"""Tests for warden.security.ratelimit."""

from __future__ import annotations

import threading

import pytest

from warden.security.ratelimit import RateLimiter


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def limiter(clock) -> RateLimiter:
    return RateLimiter(max_requests=3, window_seconds=60, clock=clock)


class TestRateLimiter:
    """Fixed-window limiting per user."""

    def test_requests_within_limit_allowed(self, limiter):
        decisions = [limiter.check_and_record("U1") for _ in range(3)]
        assert all(d.allowed for d in decisions)
        assert [d.remaining for d in decisions] == [2, 1, 0]

    def test_request_over_limit_blocked(self, limiter, clock):
        for _ in range(3):
            limiter.check_and_record("U1")
        clock.advance(15)
        decision = limiter.check_and_record("U1")
        assert not decision.allowed
        assert decision.remaining == 0
        assert decision.retry_after == 45

    def test_retry_after_is_at_least_one_second(self, limiter, clock):
        for _ in range(3):
            limiter.check_and_record("U1")
        clock.advance(59.9)
        assert limiter.check_and_record("U1").retry_after == 1

    def test_window_resets(self, limiter, clock):
        for _ in range(4):
            limiter.check_and_record("U1")
        clock.advance(61)
        decision = limiter.check_and_record("U1")
        assert decision.allowed
        assert decision.remaining == 2

    def test_users_are_independent(self, limiter):
        for _ in range(3):
            limiter.check_and_record("U1")
        assert not limiter.check_and_record("U1").allowed
        assert limiter.check_and_record("U2").allowed

    def test_status(self, limiter, clock):
        assert limiter.status("U1") is None
        limiter.check_and_record("U1")
        clock.advance(10)
        status = limiter.status("U1")
        assert status.remaining == 2
        assert status.reset_in == 50
        clock.advance(51)
        assert limiter.status("U1") is None

    def test_reset(self, limiter):
        for _ in range(4):
            limiter.check_and_record("U1")
        limiter.reset("U1")
        assert limiter.check_and_record("U1").allowed

    def test_cleanup_expired(self, limiter, clock):
        limiter.check_and_record("U1")
        clock.advance(30)
        limiter.check_and_record("U2")
        clock.advance(31)
        assert limiter.cleanup_expired() == 1
        assert limiter.status("U1") is None
        assert limiter.status("U2") is not None

    @pytest.mark.parametrize("kwargs", [{"max_requests": 0}, {"window_seconds": 0}])
    def test_invalid_configuration(self, kwargs):
        with pytest.raises(ValueError):
            RateLimiter(**kwargs)

    def test_concurrent_requests_never_exceed_limit(self, clock):
        limiter = RateLimiter(max_requests=50, window_seconds=60, clock=clock)
        allowed = []
        lock = threading.Lock()

        def worker():
            for _ in range(20):
                decision = limiter.check_and_record("U1")
                if decision.allowed:
                    with lock:
                        allowed.append(decision)

        threads = [threading.Thread(target=worker) for _ in range(10)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(allowed) == 50
