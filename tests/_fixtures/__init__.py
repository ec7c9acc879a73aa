"""Fixtures package for tests.

Re-exports the builders and fakes used across the unit tests.
"""

from .factories import BarFactory, make_bars, make_feature_vector, write_csv
from .frozen_time import FrozenClock
from .remote_api_responses import (
    FakeResponse,
    canned_api_factory,
    make_daily_series_payload,
    make_quote_payload,
)

__all__ = [
    "BarFactory",
    "make_bars",
    "make_feature_vector",
    "write_csv",
    "FrozenClock",
    "FakeResponse",
    "canned_api_factory",
    "make_daily_series_payload",
    "make_quote_payload",
]
