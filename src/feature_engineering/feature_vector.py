"""Feature vector record produced by FeatureEngine"""

from dataclasses import asdict, dataclass, fields
from datetime import date
from typing import Any, Dict, Optional, Tuple

SHARPE_EPSILON = 1e-6
HIGH_RETURN_THRESHOLD = 0.01
LOW_RISK_THRESHOLD = 0.015

# Model inputs, in the order the estimator sees them
FEATURE_COLUMNS: Tuple[str, ...] = (
    "return_1d",
    "return_5d",
    "return_20d",
    "sma_ratio_5",
    "sma_ratio_10",
    "sma_ratio_20",
    "sma_ratio_50",
    "rsi_14",
    "macd",
    "macd_signal",
    "bollinger_position",
    "volume_ratio_20",
    "volume_ma_ratio",
    "volatility_20",
    "high_low_ratio",
)

LABEL_COLUMNS: Tuple[str, ...] = ("next_day_return", "next_day_volatility")


@dataclass
class FeatureVector:
    """
    Technical features for one symbol on one date.

    The bar's OHLCV is carried along so training can drop rows built from
    corrupt bars. Labels are None for the most recent (unlabeled) bar.
    """

    symbol: str
    date: date
    open: float
    high: float
    low: float
    close: float
    volume: int

    return_1d: float = 0.0
    return_5d: float = 0.0
    return_20d: float = 0.0
    sma_ratio_5: float = 1.0
    sma_ratio_10: float = 1.0
    sma_ratio_20: float = 1.0
    sma_ratio_50: float = 1.0
    rsi_14: float = 50.0
    macd: float = 0.0
    macd_signal: float = 0.0
    bollinger_position: float = 0.5
    volume_ratio_20: float = 1.0
    volume_ma_ratio: float = 1.0
    volatility_20: float = 0.0
    high_low_ratio: float = 1.0

    next_day_return: Optional[float] = None
    next_day_volatility: Optional[float] = None

    @property
    def is_labeled(self) -> bool:
        return self.next_day_return is not None and self.next_day_volatility is not None

    @property
    def sharpe_ratio(self) -> Optional[float]:
        if not self.is_labeled:
            return None
        return self.next_day_return / (self.next_day_volatility + SHARPE_EPSILON)

    @property
    def is_high_return_low_risk(self) -> Optional[bool]:
        if not self.is_labeled:
            return None
        return self.next_day_return > HIGH_RETURN_THRESHOLD and self.next_day_volatility < LOW_RISK_THRESHOLD

    def features(self) -> Tuple[float, ...]:
        return tuple(getattr(self, name) for name in FEATURE_COLUMNS)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def field_names(cls) -> Tuple[str, ...]:
        return tuple(f.name for f in fields(cls))
