import threading

import pytest

from route_planner.services.routing.rate_limiter import RateLimiter


def test_full_minute_window_blocks_until_it_elapses(fake_clock):
    limiter = RateLimiter(per_minute=40, per_day=2000, clock=fake_clock)

    for _ in range(40):
        assert limiter.can_make_request()
        limiter.record_request()

    assert not limiter.can_make_request()
    assert limiter.get_wait_time() > 0

    fake_clock.advance(60)

    assert limiter.can_make_request()
    assert limiter.get_wait_time() == 0


def test_wait_time_counts_down_from_oldest_request(fake_clock):
    limiter = RateLimiter(per_minute=2, per_day=100, clock=fake_clock)
    limiter.record_request()
    fake_clock.advance(5)
    limiter.record_request()
    fake_clock.advance(10)

    # Oldest request was 15s ago, so it leaves the window in 45s.
    assert limiter.get_wait_time() == pytest.approx(45_000)


def test_daily_quota_is_enforced(fake_clock):
    limiter = RateLimiter(per_minute=100, per_day=3, clock=fake_clock)
    for _ in range(3):
        limiter.record_request()

    fake_clock.advance(61)
    assert not limiter.can_make_request()
    assert limiter.get_wait_time() == pytest.approx((24 * 60 * 60 - 61) * 1000)

    fake_clock.advance(24 * 60 * 60)
    assert limiter.can_make_request()


def test_acquire_sleeps_for_wait_time_then_records(fake_clock):
    limiter = RateLimiter(per_minute=1, per_day=100, clock=fake_clock)

    assert limiter.acquire(sleep=fake_clock.sleep) == 0
    waited = limiter.acquire(sleep=fake_clock.sleep)

    assert waited == pytest.approx(60)
    assert fake_clock.sleeps == [pytest.approx(60)]
    assert not limiter.can_make_request()


def test_reset_clears_window(fake_clock):
    limiter = RateLimiter(per_minute=1, per_day=1, clock=fake_clock)
    limiter.record_request()
    assert not limiter.can_make_request()

    limiter.reset()

    assert limiter.can_make_request()


def test_concurrent_acquire_never_oversubscribes():
    limiter = RateLimiter(per_minute=10, per_day=100)
    acquired = []

    def worker():
        limiter.acquire(sleep=lambda seconds: None)
        acquired.append(1)

    threads = [threading.Thread(target=worker) for _ in range(10)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(acquired) == 10
    assert not limiter.can_make_request()
