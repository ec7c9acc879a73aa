import pytest

from src.utils.core.retry import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerOpenError,
    CircuitBreakerState,
    RetryConfig,
    RetryError,
    retry,
)


class FlakyError(Exception):
    error_category = "retryable"


@pytest.mark.unit
def test_retry_recovers_after_transient_failures():
    calls = {"n": 0}

    @retry(config=RetryConfig(max_attempts=3, base_delay=0.01, jitter=False))
    def flaky():
        calls["n"] += 1
        if calls["n"] < 3:
            raise ConnectionError("boom")
        return "ok"

    assert flaky() == "ok"
    assert calls["n"] == 3


@pytest.mark.unit
def test_retry_honours_error_category_attribute():
    calls = {"n": 0}

    @retry(config=RetryConfig(max_attempts=2, base_delay=0.01))
    def always_fails():
        calls["n"] += 1
        raise FlakyError("still down")

    with pytest.raises(RetryError) as exc_info:
        always_fails()
    assert calls["n"] == 2
    assert isinstance(exc_info.value.last_exception, FlakyError)


@pytest.mark.unit
def test_non_retryable_exception_propagates_immediately():
    calls = {"n": 0}

    @retry(config=RetryConfig(max_attempts=5))
    def bad_input():
        calls["n"] += 1
        raise KeyError("missing")

    with pytest.raises(KeyError):
        bad_input()
    assert calls["n"] == 1


@pytest.mark.unit
def test_circuit_breaker_opens_after_threshold():
    breaker = CircuitBreaker(CircuitBreakerConfig(failure_threshold=2, timeout=60.0))

    def failing():
        raise RuntimeError("down")

    for _ in range(2):
        with pytest.raises(RuntimeError):
            breaker.call(failing)

    assert breaker.state == CircuitBreakerState.OPEN
    with pytest.raises(CircuitBreakerOpenError):
        breaker.call(lambda: "never called")


class _CategorizedError(Exception):
    def __init__(self, category):
        super().__init__(category)
        self.error_category = category


@pytest.mark.unit
def test_circuit_breaker_ignores_excluded_failures():
    breaker = CircuitBreaker(
        CircuitBreakerConfig(
            failure_threshold=2,
            excluded_exceptions=(KeyError,),
            excluded_categories=("client_error",),
        )
    )

    def bad_request():
        raise KeyError("unknown symbol")

    def rejected():
        raise _CategorizedError("client_error")

    for func in (bad_request, rejected, bad_request, rejected):
        with pytest.raises(Exception):
            breaker.call(func)

    assert breaker.state == CircuitBreakerState.CLOSED
    assert breaker.failure_count == 0

    def server_error():
        raise _CategorizedError("retryable")

    for _ in range(2):
        with pytest.raises(_CategorizedError):
            breaker.call(server_error)
    assert breaker.state == CircuitBreakerState.OPEN
