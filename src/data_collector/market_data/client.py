"""
HTTP client for the Alpha Vantage daily market data API
"""

from typing import Any, Dict, Optional

import requests

from src.data_collector.config import config
from src.exceptions import ProviderError, RateLimitExceededError
from src.utils.core.logger import get_logger
from src.utils.core.retry import CircuitBreaker, CircuitBreakerConfig, RetryConfig

logger = get_logger(__name__, utility="data_collector")

RATE_LIMIT_MARKERS = ("rate limit", "call frequency", "api call volume")


class MarketDataAPIError(Exception):
    """Transport or HTTP level failure talking to the provider"""

    RETRYABLE_HTTP_ERRORS = (429, 500, 502, 503, 504)
    AUTHENTICATION_ERRORS = (401, 403)

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_data: Optional[Dict[str, Any]] = None,
        error_category: Optional[str] = None,
    ) -> None:
        self.message = message
        self.status_code = status_code
        self.response_data = response_data
        self.error_category = error_category or self._classify_error()
        super().__init__(message)

    def _classify_error(self) -> str:
        if self.status_code in self.AUTHENTICATION_ERRORS:
            return "authentication"
        if self.status_code in self.RETRYABLE_HTTP_ERRORS or (self.status_code or 0) >= 500:
            return "retryable"
        if self.status_code:
            return "client_error"
        return "network"

    def is_retryable(self) -> bool:
        return self.error_category in ("retryable", "network")


# Network hiccups are retried; provider payload errors are not
def build_retry_config(max_attempts: Optional[int] = None) -> RetryConfig:
    return RetryConfig(
        max_attempts=max_attempts or config.MAX_RETRIES,
        base_delay=2.0,
        max_delay=30.0,
        retryable_exceptions=(requests.ConnectionError, requests.Timeout, ConnectionError, TimeoutError),
        non_retryable_exceptions=(ProviderError,),
    )


def build_circuit_breaker() -> CircuitBreaker:
    """Breaker that only trips on transport and server failures"""
    return CircuitBreaker(
        CircuitBreakerConfig(
            excluded_exceptions=(ProviderError, RateLimitExceededError),
            excluded_categories=("client_error", "authentication"),
        )
    )


def check_payload_for_errors(symbol: Optional[str], data: Dict[str, Any]) -> None:
    """
    Raise ProviderError for error-shaped payloads that arrive with HTTP 200.

    Alpha Vantage reports failures as an `Error Message` field, and throttling
    or premium restrictions as a `Note`/`Information` field.
    """
    if "Error Message" in data:
        raise ProviderError(f"Provider error: {data['Error Message']}", symbol=symbol, response_data=data)

    for key in ("Note", "Information"):
        note = data.get(key)
        if not note:
            continue
        if key == "Information" or any(marker in str(note).lower() for marker in RATE_LIMIT_MARKERS):
            raise ProviderError(f"Provider note: {note}", symbol=symbol, response_data=data)
        logger.info(f"Provider note for {symbol}: {note}")


class AlphaVantageClient:
    """Thin client: one HTTP request per call, no rate limiting or retries.

    Budget checks, audit logging and retries live in RateLimitedMarketFetcher.
    """

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None, timeout: Optional[int] = None):
        self.api_key = api_key or config.API_KEY
        self.base_url = base_url or config.BASE_URL
        self.timeout = timeout or config.REQUEST_TIMEOUT
        self.session = requests.Session()
        self.session.headers.update({"User-Agent": "MarketFeaturePipeline/1.0", "Accept": "application/json"})

    def _make_single_request(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        Make a single GET request and return the decoded payload

        Args:
            params: Query parameters without the api key

        Returns:
            JSON response data

        Raises:
            MarketDataAPIError: Non-200 status or malformed JSON
            ProviderError: Error payload delivered with status 200
            requests.RequestException: Network failures
        """
        query = dict(params)
        query["apikey"] = self.api_key
        symbol = params.get("symbol")
        logger.debug(f"Requesting {params.get('function')} for {symbol}")

        response = self.session.get(self.base_url, params=query, timeout=self.timeout)

        if response.status_code == 200:
            try:
                data: Dict[str, Any] = response.json()
            except ValueError as e:
                raise MarketDataAPIError(
                    "Malformed JSON in response", response.status_code, error_category="client_error"
                ) from e
            check_payload_for_errors(symbol, data)
            return data

        if response.status_code == 429:
            raise MarketDataAPIError("Rate limit exceeded", response.status_code)
        if response.status_code in MarketDataAPIError.AUTHENTICATION_ERRORS:
            raise MarketDataAPIError("Invalid API key or insufficient subscription", response.status_code)
        if response.status_code >= 500:
            logger.warning(f"Server error {response.status_code} for {symbol}")
            raise MarketDataAPIError(f"Server error {response.status_code}", response.status_code)

        raise MarketDataAPIError(f"HTTP {response.status_code}", response.status_code)

    def get_daily_series(self, symbol: str, full: bool = True) -> Dict[str, Any]:
        """Daily adjusted OHLCV time series for `symbol`"""
        return self._make_single_request(
            {
                "function": "TIME_SERIES_DAILY_ADJUSTED",
                "symbol": symbol,
                "outputsize": "full" if full else "compact",
            }
        )

    def get_global_quote(self, symbol: str) -> Dict[str, Any]:
        """Latest quote for `symbol`"""
        return self._make_single_request({"function": "GLOBAL_QUOTE", "symbol": symbol})

    def close(self) -> None:
        self.session.close()

    def __enter__(self) -> "AlphaVantageClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
