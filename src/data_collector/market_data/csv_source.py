"""
Raw bar ingestion from CSV files and provider payloads.

Header shape is detected once per file and mapped to a fixed positional
parser. Rows that cannot form a valid `Bar` are dropped and counted, never
fatal; an unrecognised header is a `FormatError`.
"""

import re
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Union

import pandas as pd

from src.data_collector.config import config
from src.data_collector.market_data.data_validator import Bar, BarValidator, DataQualityMetrics
from src.exceptions import FormatError
from src.utils.batching import batch
from src.utils.core.logger import get_logger

logger = get_logger(__name__, utility="data_collector")

PathLike = Union[str, Path]

SYMBOL_COLUMNS = {"symbol", "ticker", "name"}
ADJ_CLOSE_COLUMNS = {"adj close", "adjusted close", "adjclose", "adj_close", "adjusted_close"}
DATE_COLUMNS = {"date", "timestamp", "datetime", "time"}

TIME_SERIES_KEY = "Time Series (Daily)"
GLOBAL_QUOTE_KEY = "Global Quote"


class CsvLayout(str, Enum):
    """Supported column layouts, each with a fixed column order"""

    YAHOO_FINANCE = "yahoo_finance"  # date, open, high, low, close, adj close, volume
    SYMBOL_WITH_ADJ_CLOSE = "symbol_with_adj_close"  # date, symbol, open, high, low, close, adj close, volume
    SYMBOL_BASIC = "symbol_basic"  # date, symbol, open, high, low, close, volume
    BASIC = "basic"  # date, open, high, low, close, volume
    SYMBOL_AT_END = "symbol_at_end"  # date, open, high, low, close, volume, symbol


# Positional index of each field per layout; None means "not present"
LAYOUT_POSITIONS: Dict[CsvLayout, Dict[str, Optional[int]]] = {
    CsvLayout.YAHOO_FINANCE: {
        "date": 0, "symbol": None, "open": 1, "high": 2, "low": 3, "close": 4, "adjusted_close": 5, "volume": 6,
    },
    CsvLayout.SYMBOL_WITH_ADJ_CLOSE: {
        "date": 0, "symbol": 1, "open": 2, "high": 3, "low": 4, "close": 5, "adjusted_close": 6, "volume": 7,
    },
    CsvLayout.SYMBOL_BASIC: {
        "date": 0, "symbol": 1, "open": 2, "high": 3, "low": 4, "close": 5, "adjusted_close": None, "volume": 6,
    },
    CsvLayout.BASIC: {
        "date": 0, "symbol": None, "open": 1, "high": 2, "low": 3, "close": 4, "adjusted_close": None, "volume": 5,
    },
    CsvLayout.SYMBOL_AT_END: {
        "date": 0, "symbol": 6, "open": 1, "high": 2, "low": 3, "close": 4, "adjusted_close": None, "volume": 5,
    },
}


def _normalize(column: Any) -> str:
    return str(column).strip().lower()


def detect_layout(columns: List[str]) -> CsvLayout:
    """
    Map a CSV header to one of the supported layouts.

    Args:
        columns: Header cells in file order

    Returns:
        The detected CsvLayout

    Raises:
        FormatError: If the header matches no supported layout
    """
    normalized = [_normalize(c) for c in columns]
    if not normalized or normalized[0] not in DATE_COLUMNS:
        raise FormatError(f"First column must be a date column, got header {columns}")

    has_symbol = any(c in SYMBOL_COLUMNS for c in normalized)
    has_adj_close = any(c in ADJ_CLOSE_COLUMNS for c in normalized)

    if len(normalized) == 7 and normalized[-1] in SYMBOL_COLUMNS:
        layout = CsvLayout.SYMBOL_AT_END
    elif has_symbol and has_adj_close:
        layout = CsvLayout.SYMBOL_WITH_ADJ_CLOSE
    elif has_symbol:
        layout = CsvLayout.SYMBOL_BASIC
    elif has_adj_close:
        layout = CsvLayout.YAHOO_FINANCE
    else:
        layout = CsvLayout.BASIC

    positions = LAYOUT_POSITIONS[layout]
    required = max(p for p in positions.values() if p is not None) + 1
    if len(normalized) < required:
        raise FormatError(f"Header {columns} has {len(normalized)} columns, layout {layout.value} needs {required}")

    for name in ("open", "high", "low", "close", "volume"):
        if not normalized[positions[name]].startswith(name[:3]):
            raise FormatError(f"Unrecognized column layout {columns}: expected {name} at position {positions[name]}")
    if positions["symbol"] is not None and normalized[positions["symbol"]] not in SYMBOL_COLUMNS:
        raise FormatError(f"Unrecognized column layout {columns}: expected symbol at position {positions['symbol']}")

    return layout


def extract_symbol_from_filename(path: PathLike) -> str:
    """Guess a ticker from names like `AAPL_daily.csv` or `prices-MSFT.csv`."""
    stem = Path(path).stem
    for part in re.split(r"[_\-]", stem):
        if part.isalpha() and 2 <= len(part) <= 5:
            return part.upper()
    return stem.upper()


class RawBarSource:
    """
    Loads validated bars from CSV files or provider payloads.

    Example:
        >>> source = RawBarSource()
        >>> for bars in source.stream_batches("AAPL.csv", batch_size=1000):
        ...     store.save_bars(bars)
    """

    def __init__(self, validator: Optional[BarValidator] = None):
        self.validator = validator or BarValidator()
        self.last_metrics = DataQualityMetrics()

    def _read_header(self, path: Path) -> List[str]:
        if not path.exists():
            raise FileNotFoundError(f"CSV file not found: {path}")
        try:
            header = pd.read_csv(path, nrows=0)
        except pd.errors.EmptyDataError as e:
            raise FormatError(f"CSV file {path} has no header", source=str(path)) from e
        return list(header.columns)

    def _rows_from_chunk(
        self, chunk: pd.DataFrame, layout: CsvLayout, default_symbol: Optional[str]
    ) -> Iterator[Dict[str, Any]]:
        positions = LAYOUT_POSITIONS[layout]
        for values in chunk.itertuples(index=False, name=None):
            row = {
                name: (values[pos] if pos is not None else None)
                for name, pos in positions.items()
            }
            if positions["symbol"] is None:
                row["symbol"] = default_symbol
            yield row

    def _iter_bars(self, path: PathLike, chunk_size: int, default_symbol: Optional[str]) -> Iterator[Bar]:
        path = Path(path)
        layout = detect_layout(self._read_header(path))
        symbol = default_symbol or extract_symbol_from_filename(path)
        logger.info(f"Reading {path.name} as {layout.value} layout")

        self.last_metrics = DataQualityMetrics()
        reader = pd.read_csv(
            path,
            chunksize=chunk_size,
            dtype=str,
            keep_default_na=False,
            skipinitialspace=True,
            on_bad_lines="skip",
        )
        with reader:
            for chunk in reader:
                bars, metrics = self.validator.validate_batch(
                    self._rows_from_chunk(chunk, layout, symbol), source=path.name
                )
                self.last_metrics.merge(metrics)
                yield from bars

    def stream_batches(
        self, path: PathLike, batch_size: Optional[int] = None, default_symbol: Optional[str] = None
    ) -> Iterator[List[Bar]]:
        """
        Lazily yield lists of validated bars without loading the whole file.

        Args:
            path: CSV file path
            batch_size: Bars per yielded list; the last list may be shorter
            default_symbol: Symbol for layouts without a symbol column,
                defaults to the one inferred from the filename

        Yields:
            Lists of bars in file order. The generator is single-use.
        """
        size = batch_size or config.CSV_BATCH_SIZE
        yield from batch(self._iter_bars(path, size, default_symbol), size)

    def load(self, path: PathLike, default_symbol: Optional[str] = None) -> List[Bar]:
        """Load every valid bar of a CSV file."""
        bars: List[Bar] = []
        for chunk in self.stream_batches(path, default_symbol=default_symbol):
            bars.extend(chunk)
        logger.info(
            f"Loaded {len(bars)} bars from {Path(path).name} "
            f"({self.last_metrics.rejected_records} rejected)"
        )
        return bars

    def load_directory(self, directory: PathLike, pattern: str = "*.csv") -> Dict[str, List[Bar]]:
        """
        Load every CSV file in a directory, grouped by symbol and sorted by date.

        Files with an unrecognised layout are logged and skipped.
        """
        directory = Path(directory)
        if not directory.is_dir():
            raise FileNotFoundError(f"Directory not found: {directory}")

        grouped: Dict[str, List[Bar]] = {}
        files = sorted(directory.glob(pattern))
        for path in files:
            try:
                bars = self.load(path)
            except FormatError as e:
                logger.error(f"Skipping {path.name}: {e}")
                continue
            for bar in bars:
                grouped.setdefault(bar.symbol, []).append(bar)

        for symbol in grouped:
            grouped[symbol].sort(key=lambda b: b.date)
        logger.info(f"Loaded {len(grouped)} symbols from {len(files)} files in {directory}")
        return grouped

    def count_records(self, path: PathLike) -> int:
        """Count data rows in a CSV file without validating them."""
        path = Path(path)
        self._read_header(path)
        total = 0
        with pd.read_csv(path, chunksize=config.CSV_BATCH_SIZE, dtype=str, on_bad_lines="skip") as reader:
            for chunk in reader:
                total += len(chunk)
        return total

    def parse_payload(self, symbol: str, payload: Dict[str, Any]) -> List[Bar]:
        """
        Parse a daily time-series payload into bars sorted by date.

        Entries missing a required key are skipped with a warning.
        """
        series = payload.get(TIME_SERIES_KEY)
        if not isinstance(series, dict):
            raise FormatError(f"Payload for {symbol} has no '{TIME_SERIES_KEY}' section")

        rows: List[Dict[str, Any]] = []
        for day, values in series.items():
            try:
                rows.append(
                    {
                        "symbol": symbol,
                        "date": day,
                        "open": values["1. open"],
                        "high": values["2. high"],
                        "low": values["3. low"],
                        "close": values["4. close"],
                        "adjusted_close": values.get("5. adjusted close"),
                        "volume": values.get("6. volume", values.get("5. volume")),
                    }
                )
            except (KeyError, TypeError) as e:
                logger.warning(f"Skipping {symbol} {day}: missing field {e}")

        bars, metrics = self.validator.validate_batch(rows, source=f"{symbol} payload")
        self.last_metrics = metrics
        return sorted(bars, key=lambda b: b.date)

    def parse_quote(self, symbol: str, payload: Dict[str, Any]) -> Bar:
        """Parse a latest-quote payload into a single bar."""
        quote = payload.get(GLOBAL_QUOTE_KEY)
        if not quote:
            raise FormatError(f"Payload for {symbol} has no '{GLOBAL_QUOTE_KEY}' section")
        try:
            raw = {
                "symbol": quote.get("01. symbol", symbol),
                "date": quote["07. latest trading day"],
                "open": quote["02. open"],
                "high": quote["03. high"],
                "low": quote["04. low"],
                "close": quote["05. price"],
                "volume": quote["06. volume"],
            }
        except KeyError as e:
            raise FormatError(f"Quote for {symbol} is missing field {e}") from e
        return self.validator.validate_record(raw)


