"""Tests for the coarse login throttle."""

import pytest

from vipbar.middleware.login_throttle import (
    LOGIN_THROTTLE_MAX_REQUESTS,
    LOGIN_THROTTLE_WINDOW,
    MAX_PENALTY_MULTIPLIER,
    LoginThrottle,
)


@pytest.fixture
def throttle(clock):
    return LoginThrottle(clock=clock)


def _exhaust(throttle, ip="198.51.100.1"):
    for _ in range(LOGIN_THROTTLE_MAX_REQUESTS):
        assert throttle.check(ip).allowed


class TestLoginThrottle:
    """Tests for LoginThrottle."""

    def test_allows_up_to_limit(self, throttle):
        decisions = [throttle.check("198.51.100.1") for _ in range(LOGIN_THROTTLE_MAX_REQUESTS)]
        assert all(d.allowed for d in decisions)
        assert decisions[-1].attempts == LOGIN_THROTTLE_MAX_REQUESTS

    def test_rejects_over_limit_with_penalty(self, throttle):
        _exhaust(throttle)
        decision = throttle.check("198.51.100.1")
        assert not decision.allowed
        assert decision.retry_after == LOGIN_THROTTLE_WINDOW
        assert decision.consecutive_violations == 1

    def test_blocked_ip_gets_remaining_time(self, throttle, clock):
        _exhaust(throttle)
        throttle.check("198.51.100.1")
        clock.advance(100)
        decision = throttle.check("198.51.100.1")
        assert not decision.allowed
        assert decision.retry_after == LOGIN_THROTTLE_WINDOW - 100
        assert decision.consecutive_violations == 1

    def test_penalty_grows_with_violations(self, throttle, clock):
        _exhaust(throttle)
        throttle.check("198.51.100.1")
        clock.advance(LOGIN_THROTTLE_WINDOW)

        _exhaust(throttle)
        decision = throttle.check("198.51.100.1")
        assert decision.consecutive_violations == 2
        assert decision.retry_after == LOGIN_THROTTLE_WINDOW * 2

    def test_penalty_is_capped(self, clock):
        throttle = LoginThrottle(max_requests=1, window=10, clock=clock)
        decision = None
        for _ in range(MAX_PENALTY_MULTIPLIER + 3):
            assert throttle.check("ip").allowed
            decision = throttle.check("ip")
            clock.advance(decision.retry_after)
        assert decision.retry_after == 10 * MAX_PENALTY_MULTIPLIER

    def test_ips_are_independent(self, throttle):
        _exhaust(throttle, "198.51.100.1")
        assert not throttle.check("198.51.100.1").allowed
        assert throttle.check("198.51.100.2").allowed

    def test_reset(self, throttle):
        _exhaust(throttle)
        throttle.reset("198.51.100.1")
        assert throttle.check("198.51.100.1").allowed
        throttle.reset()
        assert len(throttle) == 0

    def test_cleanup(self, throttle, clock):
        throttle.check("198.51.100.1")
        clock.advance(100)
        _exhaust(throttle, "198.51.100.2")
        throttle.check("198.51.100.2")

        clock.advance(LOGIN_THROTTLE_WINDOW - 100)
        assert throttle.cleanup() == 1
        assert len(throttle) == 1
