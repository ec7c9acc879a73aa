"""Shared utilities: logging, retry/backoff and chunking helpers."""

from .core.logger import get_logger, shutdown_logging
from .core.retry import RetryConfig, retry, RetryError, CircuitBreaker, CircuitBreakerOpenError
from .batching import batch

__all__ = [
    "get_logger",
    "shutdown_logging",
    "RetryConfig",
    "retry",
    "RetryError",
    "CircuitBreaker",
    "CircuitBreakerOpenError",
    "batch",
]
