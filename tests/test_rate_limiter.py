import threading

import pytest

from autebook.rate_limiter import BackoffState, KeyedRateLimiter


class TestKeyedRateLimiter:
    def test_burst_then_refill(self, clock):
        limiter = KeyedRateLimiter(per_second=2, burst=1, clock=clock)
        assert limiter.check_key("www.royalroad.com") is True
        assert limiter.check_key("www.royalroad.com") is False

        clock.now += 0.5
        assert limiter.check_key("www.royalroad.com") is True

    def test_keys_are_independent(self, clock):
        limiter = KeyedRateLimiter(per_second=2, burst=1, clock=clock)
        assert limiter.check_key("a.example") is True
        assert limiter.check_key("b.example") is True
        assert limiter.check_key("a.example") is False

    def test_tokens_capped_at_burst(self, clock):
        limiter = KeyedRateLimiter(per_second=2, burst=1, clock=clock)
        limiter.check_key("host")
        clock.now += 60
        assert limiter.check_key("host") is True
        assert limiter.check_key("host") is False

    def test_wait_for_sleeps_until_token(self, clock):
        limiter = KeyedRateLimiter(per_second=2, burst=1, clock=clock)
        limiter.wait_for("host", clock.sleep)
        assert clock.sleeps == []

        limiter.wait_for("host", clock.sleep)
        assert clock.sleeps
        assert all(0.05 <= s <= 0.08 for s in clock.sleeps)
        assert clock.now >= 0.49

    def test_invalid_settings(self):
        with pytest.raises(ValueError):
            KeyedRateLimiter(per_second=0)
        with pytest.raises(ValueError):
            KeyedRateLimiter(burst=0)


class TestBackoffState:
    def test_escalate_returns_previous_level(self):
        state = BackoffState()
        assert state.escalate(10) == 0
        assert state.escalate(10) == 1
        assert state.bounce == 2

    def test_ceiling(self):
        state = BackoffState()
        for _ in range(3):
            state.escalate(3)
        assert state.escalate(3) is None
        assert state.bounce == 3

    def test_reset(self):
        state = BackoffState()
        state.escalate(10)
        state.reset()
        assert state.bounce == 0

    def test_concurrent_escalations_are_counted(self):
        state = BackoffState()

        def worker():
            for _ in range(100):
                state.escalate(10_000)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert state.bounce == 800
