"""
Validation schema for daily OHLCV bars and batch validation with quality metrics
"""

from dataclasses import dataclass, field
import datetime as dt
from typing import Any, Dict, Iterable, List, Optional, Tuple

import pandas as pd
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from src.utils.core.logger import get_logger

logger = get_logger(__name__, utility="data_collector")

DATE_FORMATS = ("%Y-%m-%d", "%m/%d/%Y", "%Y/%m/%d", "%d-%m-%Y", "%Y%m%d")


def parse_date(value: Any) -> dt.date:
    """Parse the date representations found in CSV files and provider payloads.

    Raises:
        ValueError: If the value cannot be interpreted as a calendar date
    """
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    if isinstance(value, pd.Timestamp):
        return value.date()
    if isinstance(value, (int, float)):
        # Epoch milliseconds
        return dt.datetime.fromtimestamp(value / 1000).date()

    text = str(value).strip()
    if not text:
        raise ValueError("Empty date")
    for fmt in DATE_FORMATS:
        try:
            return dt.datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    try:
        return dt.datetime.fromisoformat(text).date()
    except ValueError as e:
        raise ValueError(f"Unparsable date: {text!r}") from e


class Bar(BaseModel):
    """
    One validated daily OHLCV observation for a symbol.

    Enforces `close > 0`, non-negative volume, a non-blank upper-cased symbol
    and the logical ordering of high/low against open and close.
    """

    symbol: str = Field(..., min_length=1, max_length=20, description="Ticker symbol")
    date: dt.date
    open: float = Field(..., gt=0)
    high: float = Field(..., gt=0)
    low: float = Field(..., gt=0)
    close: float = Field(..., gt=0)
    adjusted_close: Optional[float] = Field(None, gt=0)
    volume: int = Field(..., ge=0)

    model_config = ConfigDict(frozen=True)

    @field_validator("symbol", mode="before")
    @classmethod
    def validate_symbol(cls, v):
        if v is None or not str(v).strip():
            raise ValueError("Symbol cannot be blank")
        return str(v).strip().upper()

    @field_validator("date", mode="before")
    @classmethod
    def validate_date(cls, v):
        return parse_date(v)

    @field_validator("volume", mode="before")
    @classmethod
    def validate_volume(cls, v):
        # Providers send volume as "1234" or 1234.0
        try:
            return int(float(v))
        except OverflowError as e:
            raise ValueError(f"Volume {v!r} is not a finite number") from e

    @model_validator(mode="after")
    def validate_price_relationships(self):
        if self.high < max(self.open, self.close, self.low):
            raise ValueError(f"High price ({self.high}) must be >= open, close and low")
        if self.low > min(self.open, self.close, self.high):
            raise ValueError(f"Low price ({self.low}) must be <= open, close and high")
        return self

    @property
    def effective_adjusted_close(self) -> float:
        return self.adjusted_close if self.adjusted_close is not None else self.close


@dataclass
class DataQualityMetrics:
    """Outcome of validating a batch of raw rows"""

    total_records: int = 0
    valid_records: int = 0
    rejected_records: int = 0
    rejection_reasons: Dict[str, int] = field(default_factory=dict)

    @property
    def success_rate(self) -> float:
        if self.total_records == 0:
            return 0.0
        return self.valid_records / self.total_records * 100

    def record_rejection(self, reason: str) -> None:
        self.rejected_records += 1
        self.rejection_reasons[reason] = self.rejection_reasons.get(reason, 0) + 1

    def merge(self, other: "DataQualityMetrics") -> None:
        self.total_records += other.total_records
        self.valid_records += other.valid_records
        self.rejected_records += other.rejected_records
        for reason, count in other.rejection_reasons.items():
            self.rejection_reasons[reason] = self.rejection_reasons.get(reason, 0) + count

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_records": self.total_records,
            "valid_records": self.valid_records,
            "rejected_records": self.rejected_records,
            "success_rate": round(self.success_rate, 2),
            "rejection_reasons": dict(self.rejection_reasons),
        }


class BarValidator:
    """Turns raw row dicts into `Bar` objects, dropping (not failing on) bad rows."""

    def validate_record(self, raw: Dict[str, Any]) -> Bar:
        return Bar(**raw)

    def validate_batch(self, rows: Iterable[Dict[str, Any]], source: str = "") -> Tuple[List[Bar], DataQualityMetrics]:
        """
        Validate raw rows into bars.

        Args:
            rows: Dicts with symbol, date, open, high, low, close, volume and
                optional adjusted_close keys
            source: Label used in log messages

        Returns:
            Tuple of (valid bars in input order, quality metrics)
        """
        bars: List[Bar] = []
        metrics = DataQualityMetrics()

        for raw in rows:
            metrics.total_records += 1
            try:
                bars.append(self.validate_record(raw))
                metrics.valid_records += 1
            except ValidationError as e:
                errors = e.errors()
                reason = str(errors[0]["loc"][0]) if errors and errors[0]["loc"] else "model"
                metrics.record_rejection(reason)
                logger.debug(f"Rejected row from {source or 'input'}: {raw} ({errors[0]['msg'] if errors else e})")
            except (TypeError, ValueError) as e:
                metrics.record_rejection("parse")
                logger.debug(f"Rejected row from {source or 'input'}: {raw} ({e})")

        if metrics.rejected_records:
            logger.warning(
                f"Dropped {metrics.rejected_records}/{metrics.total_records} invalid rows"
                f"{' from ' + source if source else ''}: {metrics.rejection_reasons}"
            )
        return bars, metrics
