from datetime import timedelta

import pytest

from src.data_collector.market_data.rate_limiter import SlidingWindowRateLimiter
from src.exceptions import RateLimitExceededError


def _send(store, clock, limiter, n=1):
    for _ in range(n):
        limiter.check()
        store.save_api_request_log("TestProvider", "historical", "AAA", request_time=clock.now())


@pytest.mark.unit
def test_k_plus_one_request_in_window_fails(store, frozen_clock):
    limiter = SlidingWindowRateLimiter(
        store, provider="TestProvider", requests_per_minute=3, requests_per_hour=100, clock=frozen_clock.now
    )

    for _ in range(3):
        _send(store, frozen_clock, limiter)
        frozen_clock.advance(5)

    if limiter.get_remaining_requests() != 0:
        raise AssertionError("Remaining requests should be exhausted after K requests")
    with pytest.raises(RateLimitExceededError) as exc_info:
        limiter.check()
    assert exc_info.value.provider == "TestProvider"
    assert 0 < exc_info.value.retry_after <= 60


@pytest.mark.unit
def test_budget_returns_once_oldest_request_leaves_window(store, frozen_clock):
    limiter = SlidingWindowRateLimiter(
        store, provider="TestProvider", requests_per_minute=2, requests_per_hour=100, clock=frozen_clock.now
    )
    _send(store, frozen_clock, limiter)
    frozen_clock.advance(30)
    _send(store, frozen_clock, limiter)

    with pytest.raises(RateLimitExceededError):
        limiter.check()
    assert limiter.get_time_until_reset() == pytest.approx(30.0)

    frozen_clock.advance(31)
    limiter.check()
    assert limiter.get_remaining_requests() == 1


@pytest.mark.unit
def test_hourly_budget_applies_across_minutes(store, frozen_clock):
    limiter = SlidingWindowRateLimiter(
        store, provider="TestProvider", requests_per_minute=5, requests_per_hour=4, clock=frozen_clock.now
    )
    for _ in range(4):
        _send(store, frozen_clock, limiter)
        frozen_clock.advance(120)

    with pytest.raises(RateLimitExceededError):
        limiter.check()


@pytest.mark.unit
def test_budget_survives_a_new_limiter_instance(store, frozen_clock):
    first = SlidingWindowRateLimiter(store, "TestProvider", requests_per_minute=2, clock=frozen_clock.now)
    _send(store, frozen_clock, first, n=2)

    # Simulates a process restart: fresh limiter, same audit log
    second = SlidingWindowRateLimiter(store, "TestProvider", requests_per_minute=2, clock=frozen_clock.now)
    with pytest.raises(RateLimitExceededError):
        second.check()


@pytest.mark.unit
def test_outcome_rows_and_other_providers_are_not_counted(store, frozen_clock):
    limiter = SlidingWindowRateLimiter(store, "TestProvider", requests_per_minute=2, clock=frozen_clock.now)
    store.save_api_request_log("TestProvider", "historical", "AAA", request_time=frozen_clock.now())
    store.save_api_request_log("TestProvider", "historical", "AAA", response_code=200, request_time=frozen_clock.now())
    store.save_api_request_log("OtherProvider", "historical", "AAA", request_time=frozen_clock.now())
    store.save_api_request_log(
        "TestProvider", "historical", "AAA", request_time=frozen_clock.now() - timedelta(minutes=5)
    )

    assert limiter.get_remaining_requests() == 1
