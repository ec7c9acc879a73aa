"""
Market data acquisition: bar validation, CSV ingestion and the provider client.

The rate limiter and fetcher depend on the database store and are imported
from their own modules.
"""

from .client import AlphaVantageClient, MarketDataAPIError
from .csv_source import CsvLayout, RawBarSource, detect_layout, extract_symbol_from_filename
from .data_validator import Bar, BarValidator, DataQualityMetrics

__all__ = [
    "AlphaVantageClient",
    "MarketDataAPIError",
    "CsvLayout",
    "RawBarSource",
    "detect_layout",
    "extract_symbol_from_filename",
    "Bar",
    "BarValidator",
    "DataQualityMetrics",
]
