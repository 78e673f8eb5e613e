"""Unit tests for the multi-horizon rate limiter."""

from concurrent.futures import ThreadPoolExecutor

import pytest

from image_gateway.gateway.middleware.rate_limit import (
    UNLIMITED_SENTINEL,
    Horizon,
    RateLimiter,
    RateWindowState,
    format_time_remaining,
)

HOUR = 3600
DAY = 86400


def quota_limiter(clock, hourly=5, daily=10, **kwargs) -> RateLimiter:
    return RateLimiter(
        [Horizon("hourly", hourly, HOUR), Horizon("daily", daily, DAY)],
        clock=clock,
        **kwargs,
    )


class TestAdmission:
    """Counting within one window."""

    def test_remaining_counts_down(self, clock):
        limiter = quota_limiter(clock)

        for _ in range(3):
            decision = limiter.check("client-a")
            assert decision.allowed

        assert decision.remaining == {"hourly": 2, "daily": 7}

    def test_request_after_limit_is_denied(self, clock):
        limiter = quota_limiter(clock, hourly=2)

        assert limiter.check("client-a").allowed
        assert limiter.check("client-a").allowed
        denied = limiter.check("client-a")

        assert not denied.allowed
        assert denied.remaining["hourly"] == 0
        assert denied.reset_in_ms["hourly"] == HOUR * 1000

    def test_identities_are_independent(self, clock):
        limiter = quota_limiter(clock, hourly=1)

        assert limiter.check("client-a").allowed
        assert not limiter.check("client-a").allowed
        assert limiter.check("client-b").allowed

    def test_denied_request_does_not_consume(self, clock):
        limiter = quota_limiter(clock, hourly=1, daily=10)

        limiter.check("client-a")
        for _ in range(5):
            limiter.check("client-a")

        clock.advance(HOUR + 1)
        decision = limiter.check("client-a")
        assert decision.allowed
        assert decision.remaining["daily"] == 8

    def test_reset_in_ms_tracks_clock(self, clock):
        limiter = quota_limiter(clock)
        limiter.check("client-a")

        clock.advance(600)
        decision = limiter.check("client-a")

        assert decision.reset_in_ms["hourly"] == (HOUR - 600) * 1000
        assert decision.reset_in_ms["daily"] == (DAY - 600) * 1000

    def test_limits_reported_with_decision(self, clock):
        decision = quota_limiter(clock).check("client-a")
        assert decision.limits == {"hourly": 5, "daily": 10}

    def test_requires_a_horizon(self):
        with pytest.raises(ValueError):
            RateLimiter([])


class TestWindowReset:
    """Lazy reset at the end of a window."""

    def test_window_resets_just_after_expiry(self, clock):
        limiter = quota_limiter(clock, hourly=5, daily=10)
        for _ in range(5):
            limiter.check("client-a")
        assert not limiter.check("client-a").allowed

        clock.advance(HOUR + 0.001)
        decision = limiter.check("client-a")

        assert decision.allowed
        assert decision.remaining["hourly"] == 4
        # The daily window is untouched by the hourly reset
        assert decision.remaining["daily"] == 4

    def test_window_still_active_at_exact_boundary(self, clock):
        limiter = quota_limiter(clock, hourly=1)
        limiter.check("client-a")

        clock.advance(HOUR)
        assert not limiter.check("client-a").allowed

    def test_state_expiry(self):
        state = RateWindowState(count=3, window_start=100.0, window_duration=10.0)
        assert not state.expired(110.0)
        assert state.expired(110.5)
        assert state.reset_in_ms(105.0) == 5000
        assert state.reset_in_ms(200.0) == 0


class TestCrossHorizon:
    """Every horizon must have quota."""

    def test_daily_exhaustion_denies_despite_hourly_quota(self, clock):
        limiter = quota_limiter(clock, hourly=10, daily=3)
        for _ in range(3):
            assert limiter.check("client-a").allowed

        denied = limiter.check("client-a")

        assert not denied.allowed
        assert denied.remaining == {"hourly": 7, "daily": 0}

    def test_hourly_exhaustion_denies_despite_daily_quota(self, clock):
        limiter = quota_limiter(clock, hourly=2, daily=40)
        limiter.check("client-a")
        limiter.check("client-a")

        denied = limiter.check("client-a")

        assert not denied.allowed
        assert denied.remaining == {"hourly": 0, "daily": 38}

    def test_retry_after_uses_exhausted_horizon(self, clock):
        limiter = quota_limiter(clock, hourly=10, daily=1)
        limiter.check("client-a")
        clock.advance(60)

        denied = limiter.check("client-a")

        assert denied.retry_after_ms == (DAY - 60) * 1000


class TestConcurrency:
    """Simultaneous checks for one identity."""

    def test_exact_remaining_quota_is_consumed_without_overshoot(self, clock):
        limit = 50
        limiter = RateLimiter([Horizon("hourly", limit, HOUR)], clock=clock)

        with ThreadPoolExecutor(max_workers=16) as pool:
            decisions = list(pool.map(lambda _: limiter.check("client-a"), range(limit)))

        assert all(d.allowed for d in decisions)
        assert sorted(d.remaining["hourly"] for d in decisions) == list(range(limit))
        assert not limiter.check("client-a").allowed

    def test_oversubscription_admits_exactly_the_limit(self, clock):
        limit = 20
        limiter = RateLimiter([Horizon("hourly", limit, HOUR)], clock=clock)

        with ThreadPoolExecutor(max_workers=16) as pool:
            decisions = list(pool.map(lambda _: limiter.check("client-a"), range(limit * 3)))

        assert sum(d.allowed for d in decisions) == limit


class TestDevelopmentMode:
    """Bypass when rate limiting is switched off."""

    def test_always_allowed_with_sentinel(self, clock):
        limiter = quota_limiter(clock, hourly=1, daily=1, dev_mode=True)

        for _ in range(25):
            decision = limiter.check("client-a")
            assert decision.allowed
            assert decision.remaining == {"hourly": UNLIMITED_SENTINEL, "daily": UNLIMITED_SENTINEL}

        assert len(limiter) == 0


class TestSweep:
    """Housekeeping of expired identities."""

    def test_sweep_drops_identities_past_longest_window(self, clock):
        limiter = quota_limiter(clock)
        limiter.check("client-a")
        limiter.check("client-b")

        clock.advance(HOUR + 1)
        assert limiter.sweep() == 0
        assert len(limiter) == 2

        clock.advance(DAY)
        assert limiter.sweep() == 2
        assert "client-a" not in limiter

    def test_check_sweeps_opportunistically(self, clock):
        limiter = quota_limiter(clock, sweep_interval=HOUR)
        limiter.check("client-a")

        clock.advance(DAY + 1)
        limiter.check("client-b")

        assert "client-a" not in limiter
        assert "client-b" in limiter

    def test_reset_single_identity(self, clock):
        limiter = quota_limiter(clock, hourly=1)
        limiter.check("client-a")
        limiter.check("client-b")

        limiter.reset("client-a")

        assert limiter.check("client-a").allowed
        assert not limiter.check("client-b").allowed


class TestDecisionPayloads:
    """Serialised forms attached to responses."""

    def test_to_limits_with_reset_text(self, clock):
        decision = quota_limiter(clock).check("client-a")

        limits = decision.to_limits(include_reset=True)

        assert limits["hourly"] == {"remaining": 4, "resetInMs": HOUR * 1000, "resetIn": "1h 0m"}
        assert limits["daily"]["resetIn"] == "24h 0m"

    def test_to_headers(self, clock):
        limiter = RateLimiter([Horizon("hourly", 200, HOUR)], clock=clock)
        headers = limiter.check("client-a").to_headers()

        assert headers["X-RateLimit-Limit"] == "200"
        assert headers["X-RateLimit-Remaining"] == "199"
        assert headers["X-RateLimit-Reset"].endswith("Z")


@pytest.mark.parametrize(
    "ms,expected",
    [
        (0, "0s"),
        (42_000, "42s"),
        (200_000, "3m 20s"),
        (3_900_000, "1h 5m"),
        (-5, "0s"),
    ],
)
def test_format_time_remaining(ms, expected):
    assert format_time_remaining(ms) == expected
