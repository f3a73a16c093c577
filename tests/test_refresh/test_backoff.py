"""Tests for the polling-cycle backoff."""

from forumwatch.refresh.backoff import CycleBackoff


class TestCycleBackoff:
    """Tests for CycleBackoff."""

    def test_doubles_per_failure(self):
        backoff = CycleBackoff(base_delay=5.0, max_delay=300.0, jitter=0.0)

        assert [backoff.failed() for _ in range(4)] == [5.0, 10.0, 20.0, 40.0]
        assert backoff.failures == 4

    def test_capped(self):
        backoff = CycleBackoff(base_delay=100.0, max_delay=150.0, jitter=0.0)
        backoff.failed()

        assert backoff.failed() == 150.0

    def test_jitter_spread(self):
        backoff = CycleBackoff(base_delay=10.0, jitter=0.5)

        for _ in range(50):
            backoff.succeeded()
            assert 5.0 <= backoff.failed() <= 15.0

    def test_success_starts_over(self):
        backoff = CycleBackoff(base_delay=2.0, jitter=0.0)
        backoff.failed()
        backoff.failed()

        backoff.succeeded()

        assert backoff.failures == 0
        assert backoff.failed() == 2.0
