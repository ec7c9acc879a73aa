"""
Sliding-window rate limiting backed by the API request audit log
"""

from datetime import datetime, timedelta
from typing import Callable, List, Optional, Tuple

from src.data_collector.config import config
from src.database.market_data_store import MarketDataStore, utc_now
from src.exceptions import RateLimitExceededError
from src.utils.core.logger import get_logger

logger = get_logger(__name__, utility="data_collector")

MINUTE = timedelta(minutes=1)
HOUR = timedelta(hours=1)


class SlidingWindowRateLimiter:
    """
    Provider-scoped request budget over trailing time windows.

    Usage is counted from `api_request_log` rows rather than kept in memory,
    so the budget survives process restarts. When a window is exhausted the
    limiter fails fast instead of sleeping.

    Attributes:
        provider: Provider name the audit rows are filed under
        windows: (window length, max requests) pairs, checked together
    """

    def __init__(
        self,
        store: MarketDataStore,
        provider: Optional[str] = None,
        requests_per_minute: Optional[int] = None,
        requests_per_hour: Optional[int] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.provider = provider or config.PROVIDER
        self.windows: List[Tuple[timedelta, int]] = [
            (MINUTE, requests_per_minute if requests_per_minute is not None else config.REQUESTS_PER_MINUTE),
            (HOUR, requests_per_hour if requests_per_hour is not None else config.REQUESTS_PER_HOUR),
        ]
        self.clock = clock

    def _used(self, window: timedelta, now: datetime) -> int:
        return self.store.count_api_requests(self.provider, now - window)

    def get_remaining_requests(self) -> int:
        """Requests still allowed right now, the minimum over all windows"""
        now = self.clock()
        return max(0, min(limit - self._used(window, now) for window, limit in self.windows))

    def get_time_until_reset(self) -> float:
        """Seconds until an exhausted window frees a slot; 0 when requests are allowed"""
        now = self.clock()
        wait = 0.0
        for window, limit in self.windows:
            if self._used(window, now) < limit:
                continue
            times = self.store.get_api_request_times(self.provider, now - window)
            if times:
                wait = max(wait, (times[0] + window - now).total_seconds())
        return max(0.0, wait)

    def check(self) -> None:
        """
        Verify a request may be sent now.

        Raises:
            RateLimitExceededError: If any window has no budget left
        """
        now = self.clock()
        for window, limit in self.windows:
            used = self._used(window, now)
            if used >= limit:
                retry_after = self.get_time_until_reset()
                logger.warning(
                    f"{self.provider} rate limit reached: {used}/{limit} requests in the last "
                    f"{int(window.total_seconds())}s, retry in {retry_after:.1f}s"
                )
                raise RateLimitExceededError(
                    f"{self.provider} allows {limit} requests per {int(window.total_seconds())}s",
                    provider=self.provider,
                    retry_after=retry_after,
                )

    def __str__(self) -> str:
        return (
            f"SlidingWindowRateLimiter(provider: {self.provider}, "
            f"remaining: {self.get_remaining_requests()}, reset_in: {self.get_time_until_reset():.1f}s)"
        )


class NoOpRateLimiter:
    """Limiter used when rate limiting is disabled"""

    provider = "disabled"

    def check(self) -> None:
        return

    def get_remaining_requests(self) -> int:
        return 10_000_000

    def get_time_until_reset(self) -> float:
        return 0.0


def get_rate_limiter(store: MarketDataStore, provider: Optional[str] = None):
    """Return the limiter matching the DISABLE_RATE_LIMITING setting"""
    if config.DISABLE_RATE_LIMITING:
        return NoOpRateLimiter()
    return SlidingWindowRateLimiter(store, provider=provider)
