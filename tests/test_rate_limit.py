from __future__ import annotations


class _Clock:
    def __init__(self, t: float = 1_000.0) -> None:
        self.t = t

    def __call__(self) -> float:
        return self.t


def test_twenty_allowed_twenty_first_refused_then_window_resets() -> None:
    from pmagent.auth.rate_limit import FixedWindowRateLimiter

    clock = _Clock()
    rl = FixedWindowRateLimiter(20, 60, clock=clock)

    results = [rl.check("1.2.3.4") for _ in range(20)]
    assert all(r.success for r in results)
    assert [r.remaining for r in results[:3]] == [19, 18, 17]
    assert results[-1].remaining == 0

    refused = rl.check("1.2.3.4")
    assert refused.success is False
    assert refused.remaining == 0

    # Still inside the window (expiry is strictly after reset_at).
    clock.t += 60
    assert rl.check("1.2.3.4").success is False

    clock.t += 0.001
    fresh = rl.check("1.2.3.4")
    assert fresh.success is True
    assert fresh.remaining == 19


def test_identifiers_are_independent() -> None:
    from pmagent.auth.rate_limit import FixedWindowRateLimiter

    rl = FixedWindowRateLimiter(1, 60, clock=_Clock())
    assert rl.check("a").success is True
    assert rl.check("a").success is False
    assert rl.check("b").success is True


def test_get_does_not_count_and_sweep_drops_expired() -> None:
    from pmagent.auth.rate_limit import FixedWindowRateLimiter

    clock = _Clock()
    rl = FixedWindowRateLimiter(5, 10, clock=clock)
    assert rl.get("a") is None
    rl.check("a")
    rl.check("b")
    assert rl.get("a").remaining == 4
    assert rl.get("a").remaining == 4
    assert len(rl) == 2

    clock.t += 11
    assert rl.sweep() == 2
    assert len(rl) == 0


def test_reset_clears_identifier() -> None:
    from pmagent.auth.rate_limit import FixedWindowRateLimiter

    rl = FixedWindowRateLimiter(1, 60, clock=_Clock())
    rl.check("a")
    rl.reset("a")
    assert rl.check("a").success is True


def test_sweeper_thread_starts_and_stops() -> None:
    from pmagent.auth.rate_limit import FixedWindowRateLimiter

    rl = FixedWindowRateLimiter(1, 60)
    rl.start_sweeper(0.01)
    rl.start_sweeper(0.01)
    rl.stop_sweeper()


def test_request_identifier_prefers_forwarded_for() -> None:
    from pmagent.auth.rate_limit import request_identifier

    assert request_identifier({"x-forwarded-for": "10.0.0.1, 172.16.0.1", "x-real-ip": "9.9.9.9"}) == "10.0.0.1"
    assert request_identifier({"x-real-ip": "9.9.9.9"}) == "9.9.9.9"
    assert request_identifier({}) == "anonymous"


def test_rate_limit_headers() -> None:
    from pmagent.auth.rate_limit import FixedWindowRateLimiter, rate_limit_headers

    rl = FixedWindowRateLimiter(3, 60, clock=_Clock(0.0))
    h = rate_limit_headers(rl.check("a"))
    assert h["X-RateLimit-Remaining"] == "2"
    assert h["X-RateLimit-Reset"] == "1970-01-01T00:01:00+00:00"
