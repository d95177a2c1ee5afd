"""
Unit tests for the sliding-window rate limiter.
"""

import threading

import pytest

from warden.api.ratelimit import SlidingWindowLimiter
from warden.errors import RateLimited


@pytest.fixture
def limiter(clock):
    return SlidingWindowLimiter(3, 60, message="Slow down", clock=clock)


class TestSlidingWindowLimiter:
    """Test counting, expiry and per-key isolation."""

    def test_hit_until_limited(self, limiter):
        """Test that the budget is enforced."""
        for _ in range(3):
            limiter.hit("10.0.0.1")
        with pytest.raises(RateLimited, match="Slow down") as exc_info:
            limiter.hit("10.0.0.1")
        assert exc_info.value.retry_after == 60

    def test_window_slides(self, limiter, clock):
        """Test that old events leave the window."""
        limiter.hit("k")
        clock.advance(30)
        limiter.hit("k")
        limiter.hit("k")
        with pytest.raises(RateLimited):
            limiter.hit("k")

        clock.advance(31)
        limiter.hit("k")

    def test_retry_after(self, limiter, clock):
        """Test the wait reported to the client."""
        for _ in range(3):
            limiter.hit("k")
        clock.advance(45)
        with pytest.raises(RateLimited) as exc_info:
            limiter.hit("k")
        assert exc_info.value.retry_after == 15

    def test_keys_are_independent(self, limiter):
        """Test that one key's budget does not affect another."""
        for _ in range(3):
            limiter.hit("a")
        limiter.hit("b")
        with pytest.raises(RateLimited):
            limiter.hit("a")

    def test_default_clock(self):
        """Test construction with the real clock."""
        limiter = SlidingWindowLimiter(1, 60)
        limiter.hit("a")
        with pytest.raises(RateLimited):
            limiter.hit("a")


class TestReservations:
    """Test the reserve-then-release pattern used by login."""

    def test_release_gives_slot_back(self, limiter):
        """Test that a released reservation does not count."""
        for _ in range(10):
            stamp = limiter.reserve("k")
            limiter.release("k", stamp)
        assert "k" not in limiter._events

    def test_kept_reservations_count(self, limiter):
        """Test that unreleased reservations use up the budget."""
        for _ in range(3):
            limiter.reserve("k")
        with pytest.raises(RateLimited):
            limiter.reserve("k")

    def test_release_removes_one_event(self, limiter):
        """Test that releasing one of several same-time events keeps the rest."""
        first = limiter.reserve("k")
        second = limiter.reserve("k")
        assert first == second
        limiter.release("k", second)
        assert limiter._events["k"] == [first]

    def test_release_after_expiry(self, limiter, clock):
        """Test releasing a reservation that already left the window."""
        stamp = limiter.reserve("k")
        clock.advance(61)
        limiter.hit("other")
        limiter.release("k", stamp)
        assert "k" not in limiter._events

    def test_concurrent_reservations(self):
        """Test that racing callers never exceed the budget."""
        limiter = SlidingWindowLimiter(5, 60)
        granted = []
        barrier = threading.Barrier(16)

        def attempt():
            barrier.wait()
            try:
                granted.append(limiter.reserve("k"))
            except RateLimited:
                pass

        threads = [threading.Thread(target=attempt) for _ in range(16)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert len(granted) == 5


class TestSweep:
    """Test that idle keys do not accumulate."""

    def test_stale_keys_dropped(self, limiter, clock):
        """Test that a key which never returns is removed after a window."""
        limiter.reserve("10.0.0.1")
        limiter.reserve("10.0.0.2")
        clock.advance(61)
        limiter.hit("10.0.0.3")
        assert set(limiter._events) == {"10.0.0.3"}

    def test_live_keys_kept(self, limiter, clock):
        """Test that the sweep keeps events still inside the window."""
        clock.advance(30)
        limiter.reserve("a")
        clock.advance(31)
        limiter.hit("b")
        assert set(limiter._events) == {"a", "b"}
