"""
Tests for the Circuit Breaker
=============================

Closed -> open after consecutive failures, then a single half-open trial
once the cooldown has elapsed.
"""

import pytest

from collabhub.api.audit.breaker import CircuitBreaker


@pytest.fixture
def breaker(fake_clock):
    return CircuitBreaker(failure_threshold=3, cooldown_seconds=60, time_source=fake_clock)


class TestCircuitBreaker:
    """Tests for breaker state transitions."""

    def test_starts_closed(self, breaker):
        assert breaker.can_proceed()
        assert not breaker.is_open

    def test_opens_at_threshold(self, breaker):
        """Should open on the failure that reaches the threshold."""
        assert breaker.record_failure() is False
        assert breaker.record_failure() is False
        assert breaker.record_failure() is True

        assert breaker.is_open
        assert not breaker.can_proceed()

    def test_success_resets_failure_count(self, breaker):
        breaker.record_failure()
        breaker.record_failure()
        breaker.record_success()
        breaker.record_failure()

        assert not breaker.is_open
        assert breaker.failures == 1

    def test_half_open_after_cooldown(self, breaker, fake_clock):
        for _ in range(3):
            breaker.record_failure()

        fake_clock.advance(59)
        assert not breaker.can_proceed()

        fake_clock.advance(1)
        assert breaker.can_proceed()

    def test_half_open_success_closes(self, breaker, fake_clock):
        for _ in range(3):
            breaker.record_failure()
        fake_clock.advance(60)

        breaker.record_success()

        assert not breaker.is_open
        assert breaker.get_status()["state"] == "closed"

    def test_half_open_failure_restarts_cooldown(self, breaker, fake_clock):
        for _ in range(3):
            breaker.record_failure()
        fake_clock.advance(60)

        assert breaker.record_failure() is False
        assert not breaker.can_proceed()

        fake_clock.advance(60)
        assert breaker.can_proceed()

    def test_half_open_allows_a_single_trial(self, breaker, fake_clock):
        for _ in range(3):
            breaker.record_failure()
        fake_clock.advance(60)

        assert breaker.can_proceed()
        assert breaker.get_status()["state"] == "half_open"
        assert not breaker.can_proceed()
        assert not breaker.can_proceed()

    def test_unreported_trial_is_abandoned_after_cooldown(self, breaker, fake_clock):
        for _ in range(3):
            breaker.record_failure()
        fake_clock.advance(60)
        assert breaker.can_proceed()

        fake_clock.advance(59)
        assert not breaker.can_proceed()

        fake_clock.advance(1)
        assert breaker.can_proceed()

    def test_status_counts_trips(self, breaker):
        for _ in range(3):
            breaker.record_failure()

        status = breaker.get_status()
        assert status["state"] == "open"
        assert status["trips"] == 1
        assert status["failures"] == 3

    def test_reset(self, breaker):
        for _ in range(3):
            breaker.record_failure()
        breaker.reset()

        assert breaker.can_proceed()
        assert breaker.failures == 0
