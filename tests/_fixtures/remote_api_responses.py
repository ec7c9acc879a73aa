"""Canned provider responses for tests.

Patch `requests.Session.get` (or a client method) to return these
FakeResponse objects so no test reaches the network.
"""

from datetime import date
from typing import Any, Dict, Optional

import pandas as pd


class FakeResponse:
    def __init__(self, status: int = 200, payload: Optional[Dict[str, Any]] = None, raise_on_json: bool = False):
        self.status_code = status
        self._payload = payload if payload is not None else {}
        self._raise = raise_on_json

    def json(self) -> Dict[str, Any]:
        if self._raise:
            raise ValueError("malformed json")
        return self._payload


def make_daily_series_payload(symbol: str = "TST", n: int = 5, start: date = date(2024, 1, 2)) -> Dict[str, Any]:
    """Alpha Vantage TIME_SERIES_DAILY_ADJUSTED shaped payload with rising prices"""
    series = {}
    for i, day in enumerate(pd.bdate_range(start, periods=n)):
        close = 100.0 + i
        series[day.strftime("%Y-%m-%d")] = {
            "1. open": f"{close - 0.5:.4f}",
            "2. high": f"{close + 1:.4f}",
            "3. low": f"{close - 1:.4f}",
            "4. close": f"{close:.4f}",
            "5. adjusted close": f"{close:.4f}",
            "6. volume": str(1000 + i),
        }
    return {"Meta Data": {"2. Symbol": symbol}, "Time Series (Daily)": series}


def make_quote_payload(symbol: str = "TST") -> Dict[str, Any]:
    return {
        "Global Quote": {
            "01. symbol": symbol,
            "02. open": "100.0000",
            "03. high": "102.0000",
            "04. low": "99.0000",
            "05. price": "101.5000",
            "06. volume": "123456",
            "07. latest trading day": "2024-03-01",
        }
    }


def canned_api_factory(kind: str = "daily_series", status: int = 200, raise_on_json: bool = False) -> FakeResponse:
    """Return a FakeResponse for the requested canned kind.

    Kinds supported:
    - "daily_series": five days of rising bars for TST
    - "quote": a global quote for TST
    - "error": an `Error Message` payload
    - "rate_limit_note": a throttling `Note` payload
    - "empty": an empty JSON object
    """
    if kind == "daily_series":
        payload = make_daily_series_payload()
    elif kind == "quote":
        payload = make_quote_payload()
    elif kind == "error":
        payload = {"Error Message": "Invalid API call. Please retry or visit the documentation."}
    elif kind == "rate_limit_note":
        payload = {
            "Note": "Thank you for using Alpha Vantage! Our standard API call frequency is 5 calls per "
            "minute. Please visit our premium page if you would like a higher rate limit."
        }
    else:
        payload = {}
    return FakeResponse(status=status, payload=payload, raise_on_json=raise_on_json)
