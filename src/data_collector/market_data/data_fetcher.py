"""
Rate-limited fetching of historical bars and quotes from the market data provider
"""

import threading
import time
from datetime import date, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence

import requests

from src.data_collector.config import config
from src.data_collector.market_data.client import (
    AlphaVantageClient,
    MarketDataAPIError,
    build_circuit_breaker,
    build_retry_config,
)
from src.data_collector.market_data.csv_source import RawBarSource
from src.data_collector.market_data.data_validator import Bar
from src.data_collector.market_data.rate_limiter import get_rate_limiter
from src.database.market_data_store import MarketDataStore
from src.exceptions import ProviderError
from src.utils.batching import batch
from src.utils.core.logger import get_logger
from src.utils.core.retry import CircuitBreaker, CircuitBreakerOpenError, RetryConfig, RetryError, retry

logger = get_logger(__name__, utility="data_collector")

# Compact responses cover roughly the last 100 trading days
COMPACT_WINDOW = timedelta(days=140)

# Response codes written to the audit log for failures without an HTTP status
NETWORK_ERROR_CODE = -1


class RateLimitedMarketFetcher:
    """
    Fetches bars under a durable request budget.

    Every outbound request passes one in-process gate, so at most one call is
    in flight per fetcher, and is followed by a fixed delay. Each attempt is
    recorded in the audit log: a reservation row (response code 0) before
    sending and an outcome row afterwards.
    """

    def __init__(
        self,
        store: MarketDataStore,
        client: Optional[AlphaVantageClient] = None,
        rate_limiter: Any = None,
        source: Optional[RawBarSource] = None,
        provider: Optional[str] = None,
        request_delay: Optional[float] = None,
        batch_size: Optional[int] = None,
        batch_delay: Optional[float] = None,
        retry_config: Optional[RetryConfig] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        """
        Args:
            store: Store holding the audit log
            client: Provider client, a default AlphaVantageClient when omitted
            rate_limiter: Limiter with a `check()` method, built from config when omitted
            source: Parser for provider payloads
            provider: Provider name used in audit rows
            request_delay: Seconds slept after every request
            batch_size: Symbols per group in `fetch_batch`
            batch_delay: Seconds slept between groups in `fetch_batch`
            retry_config: Retry policy for transport failures
            circuit_breaker: Breaker shared by this fetcher's requests
        """
        self.store = store
        self.client = client or AlphaVantageClient()
        self.provider = provider or config.PROVIDER
        self.rate_limiter = rate_limiter or get_rate_limiter(store, self.provider)
        self.source = source or RawBarSource()
        self.request_delay = config.REQUEST_DELAY_SECONDS if request_delay is None else request_delay
        self.batch_size = batch_size or config.BATCH_SIZE
        self.batch_delay = config.BATCH_DELAY_SECONDS if batch_delay is None else batch_delay
        self.retry_config = retry_config or build_retry_config()
        self.circuit_breaker = circuit_breaker or build_circuit_breaker()
        self._gate = threading.Lock()
        self._request_sent = False

    def _audit(self, request_type: str, symbol: Optional[str], response_code: int, error: Optional[str] = None) -> None:
        """Write an audit row; failures are logged and never raised"""
        try:
            self.store.save_api_request_log(
                provider=self.provider,
                request_type=request_type,
                symbol=symbol,
                response_code=response_code,
                error_message=error,
            )
        except Exception as e:
            logger.error(f"Failed to write API audit row for {symbol} ({request_type}): {e}")

    def _attempt(self, request_type: str, symbol: str, call: Callable[[], Dict[str, Any]]) -> Dict[str, Any]:
        self.rate_limiter.check()
        self._request_sent = True
        self._audit(request_type, symbol, 0)

        try:
            data = call()
        except ProviderError as e:
            logger.error(f"Provider error for {symbol}: {e}")
            self._audit(request_type, symbol, 200, str(e))
            raise
        except MarketDataAPIError as e:
            self._audit(request_type, symbol, e.status_code or NETWORK_ERROR_CODE, e.message)
            raise
        except requests.RequestException as e:
            self._audit(request_type, symbol, NETWORK_ERROR_CODE, str(e))
            raise

        self._audit(request_type, symbol, 200)
        return data

    def _request(self, request_type: str, symbol: str, call: Callable[[], Dict[str, Any]]) -> Dict[str, Any]:
        """
        Run one provider call through the gate, the budget check and retries.

        Raises:
            RateLimitExceededError: Budget exhausted, nothing was sent
            ProviderError: Error payload from the provider
            MarketDataAPIError: HTTP failure or retries exhausted
        """
        attempt = retry(config=self.retry_config, circuit_breaker=self.circuit_breaker)(self._attempt)

        with self._gate:
            self._request_sent = False
            try:
                return attempt(request_type, symbol, call)
            except RetryError as e:
                raise MarketDataAPIError(
                    f"{request_type} for {symbol} failed after {e.attempts} attempts. Last error: {e.last_exception}",
                    error_category="network",
                ) from e
            except CircuitBreakerOpenError as e:
                raise MarketDataAPIError(
                    f"Circuit breaker is open, {self.provider} temporarily unavailable",
                    error_category="retryable",
                ) from e
            finally:
                if self._request_sent and self.request_delay > 0:
                    time.sleep(self.request_delay)

    def fetch_historical(self, symbol: str, start_date: date, end_date: date) -> List[Bar]:
        """
        Fetch daily bars for `symbol` between two dates, inclusive

        Args:
            symbol: Ticker symbol
            start_date: First date to keep
            end_date: Last date to keep

        Returns:
            Bars sorted by date
        """
        symbol = symbol.strip().upper()
        full = (date.today() - start_date) > COMPACT_WINDOW
        logger.info(f"Fetching daily bars for {symbol} from {start_date} to {end_date}")

        payload = self._request("historical", symbol, lambda: self.client.get_daily_series(symbol, full=full))
        bars = [bar for bar in self.source.parse_payload(symbol, payload) if start_date <= bar.date <= end_date]

        logger.info(f"Retrieved {len(bars)} bars for {symbol}")
        return bars

    def fetch_quote(self, symbol: str) -> Bar:
        """Fetch the latest quote for `symbol` as a single bar"""
        symbol = symbol.strip().upper()
        payload = self._request("quote", symbol, lambda: self.client.get_global_quote(symbol))
        return self.source.parse_quote(symbol, payload)

    def fetch_batch(
        self,
        symbols: Sequence[str],
        start_date: date,
        end_date: date,
        cancel_event: Optional[threading.Event] = None,
    ) -> Dict[str, List[Bar]]:
        """
        Fetch several symbols in groups with a pause between groups.

        A symbol that fails maps to an empty list instead of aborting the
        batch. If `cancel_event` is set, fetching stops before the next
        symbol and the symbols not yet fetched are left out of the result.

        Returns:
            Dictionary mapping symbol to its bars
        """
        unique = list(dict.fromkeys(s.strip().upper() for s in symbols if s and s.strip()))
        groups = list(batch(unique, self.batch_size))
        results: Dict[str, List[Bar]] = {}
        failed: List[str] = []

        logger.info(f"Fetching {len(unique)} symbols in {len(groups)} groups of up to {self.batch_size}")

        for group_num, group in enumerate(groups, start=1):
            for symbol in group:
                if cancel_event is not None and cancel_event.is_set():
                    logger.warning(f"Batch fetch cancelled after {len(results)}/{len(unique)} symbols")
                    return results
                try:
                    results[symbol] = self.fetch_historical(symbol, start_date, end_date)
                except Exception as e:
                    logger.error(f"Failed to fetch data for {symbol}: {e}")
                    results[symbol] = []
                    failed.append(symbol)

            if group_num < len(groups) and self.batch_delay > 0:
                logger.info(f"Group {group_num}/{len(groups)} done, waiting {self.batch_delay}s before next group")
                time.sleep(self.batch_delay)

        logger.info(
            f"Batch fetch complete: {len(unique) - len(failed)}/{len(unique)} symbols successful"
            + (f", failed: {failed}" if failed else "")
        )
        return results

    def get_remaining_requests(self) -> int:
        return self.rate_limiter.get_remaining_requests()

    def close(self) -> None:
        self.client.close()

    def __enter__(self) -> "RateLimitedMarketFetcher":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
