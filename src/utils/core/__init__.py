"""Core utilities shared across the pipeline: logging and retry handling."""

from src.utils.core.logger import get_logger
from src.utils.core.retry import (
    RetryConfig,
    RetryError,
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerOpenError,
    retry,
)

__all__ = [
    "get_logger",
    "RetryConfig",
    "RetryError",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerOpenError",
    "retry",
]
