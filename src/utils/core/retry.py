"""
Retry with exponential backoff plus a circuit breaker for outbound calls.

Only transport-level failures are retried here. Provider error payloads and
rate-limit rejections are raised straight to the caller.
"""

import functools
import random
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Type, TypeVar

from src.utils.core.logger import get_logger

logger = get_logger(__name__, utility="data_collector")

T = TypeVar("T")


class RetryError(Exception):
    """Raised when every retry attempt failed."""

    def __init__(self, message: str, last_exception: Exception, attempts: int):
        super().__init__(message)
        self.last_exception = last_exception
        self.attempts = attempts


class CircuitBreakerOpenError(Exception):
    """Raised when a call is rejected because the circuit is open."""


class CircuitBreakerState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class RetryConfig:
    """Retry policy for a call site."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    backoff_factor: float = 2.0
    jitter: bool = True
    retryable_exceptions: tuple[Type[Exception], ...] = (ConnectionError, TimeoutError)
    non_retryable_exceptions: tuple[Type[Exception], ...] = ()


@dataclass
class CircuitBreakerConfig:
    failure_threshold: int = 5
    success_threshold: int = 2
    timeout: float = 60.0
    # Errors about the request itself, not the dependency's health
    excluded_exceptions: tuple[Type[Exception], ...] = ()
    excluded_categories: tuple[str, ...] = ()


class CircuitBreaker:
    """Stops calling a failing dependency until `timeout` seconds have passed."""

    def __init__(self, config: Optional[CircuitBreakerConfig] = None):
        self.config = config or CircuitBreakerConfig()
        self.state = CircuitBreakerState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time = 0.0

    def _record_success(self) -> None:
        if self.state == CircuitBreakerState.HALF_OPEN:
            self.success_count += 1
            if self.success_count >= self.config.success_threshold:
                self.state = CircuitBreakerState.CLOSED
                self.failure_count = 0
                self.success_count = 0
                logger.info("Circuit breaker closed, provider recovered")
        else:
            self.failure_count = 0

    def _record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = time.time()
        if self.state == CircuitBreakerState.HALF_OPEN or self.failure_count >= self.config.failure_threshold:
            self.state = CircuitBreakerState.OPEN
            logger.warning(f"Circuit breaker opened after {self.failure_count} failures")

    def _counts_as_failure(self, exception: Exception) -> bool:
        if isinstance(exception, self.config.excluded_exceptions):
            return False
        return getattr(exception, "error_category", None) not in self.config.excluded_categories

    def call(self, func: Callable[..., T], *args, **kwargs) -> T:
        """Run `func` through the breaker."""
        if self.state == CircuitBreakerState.OPEN:
            if time.time() - self.last_failure_time >= self.config.timeout:
                self.state = CircuitBreakerState.HALF_OPEN
                self.success_count = 0
                logger.info("Circuit breaker half-open, probing provider")
            else:
                raise CircuitBreakerOpenError("Circuit breaker is open")

        try:
            result = func(*args, **kwargs)
        except Exception as e:
            if self._counts_as_failure(e):
                self._record_failure()
            raise
        self._record_success()
        return result


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Exponential backoff delay for a zero-based attempt, with +/-25% jitter."""
    delay = min(config.base_delay * (config.backoff_factor**attempt), config.max_delay)
    if config.jitter:
        spread = delay * 0.25
        delay += random.uniform(-spread, spread)
    return max(0.0, delay)


def is_retryable_exception(exception: Exception, config: RetryConfig) -> bool:
    """Decide whether `exception` should be retried under `config`."""
    if isinstance(exception, config.non_retryable_exceptions):
        return False
    if isinstance(exception, config.retryable_exceptions):
        return True
    # MarketDataAPIError and friends carry their own classification
    return getattr(exception, "error_category", None) == "retryable"


def retry(config: Optional[RetryConfig] = None, circuit_breaker: Optional[CircuitBreaker] = None) -> Callable:
    """
    Decorate a function with retry and optional circuit breaker handling.

    Args:
        config: Retry policy, defaults to `RetryConfig()`
        circuit_breaker: Breaker shared by every call of the decorated function

    Returns:
        Decorator. Non-retryable exceptions propagate unchanged; exhausting
        the attempts raises `RetryError` wrapping the last exception.
    """
    config = config or RetryConfig()

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> T:
            last_exception: Optional[Exception] = None
            for attempt in range(config.max_attempts):
                try:
                    if circuit_breaker is not None:
                        return circuit_breaker.call(func, *args, **kwargs)
                    return func(*args, **kwargs)
                except Exception as e:
                    if not is_retryable_exception(e, config):
                        raise
                    last_exception = e
                    if attempt < config.max_attempts - 1:
                        delay = calculate_delay(attempt, config)
                        logger.warning(
                            f"Attempt {attempt + 1}/{config.max_attempts} failed "
                            f"({type(e).__name__}). Retrying in {delay:.2f}s: {e}"
                        )
                        time.sleep(delay)
                    else:
                        logger.error(f"All {config.max_attempts} attempts failed: {type(e).__name__}: {e}")

            raise RetryError(
                f"Operation failed after {config.max_attempts} attempts",
                last_exception,
                config.max_attempts,
            )

        return wrapper

    return decorator
