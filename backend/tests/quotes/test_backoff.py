"""Tests for the reconnect backoff policy."""

from app.quotes.broker import BackoffPolicy


class TestBackoffPolicy:
    def test_default_sequence(self):
        """Doubling from 1s, capped at 30s."""
        policy = BackoffPolicy()
        assert [policy.delay(n) for n in range(1, 8)] == [1, 2, 4, 8, 16, 30, 30]

    def test_non_decreasing_and_capped(self):
        policy = BackoffPolicy(base_delay=0.5, max_delay=10)
        delays = [policy.delay(n) for n in range(1, 50)]
        assert delays == sorted(delays)
        assert max(delays) == 10

    def test_no_delay_before_first_attempt(self):
        assert BackoffPolicy().delay(0) == 0.0

    def test_exhausted(self):
        policy = BackoffPolicy(max_attempts=5)
        assert not policy.exhausted(5)
        assert policy.exhausted(6)

    def test_unbounded(self):
        policy = BackoffPolicy(max_attempts=None)
        assert not policy.exhausted(10_000)
