"""Prediction output record"""

from dataclasses import asdict, dataclass
from datetime import date
from typing import Any, Dict, Optional


@dataclass
class PredictionResult:
    """Next-trading-day forecast for one symbol.

    `actual_return`/`actual_volatility` stay None until the target bar exists
    and the actuals are back-filled.
    """

    symbol: str
    prediction_date: date
    target_date: date
    current_price: float
    predicted_price: float
    predicted_return: float
    predicted_volatility: float
    confidence_score: float
    risk_adjusted_score: float
    model_version: str
    actual_return: Optional[float] = None
    actual_volatility: Optional[float] = None

    @property
    def has_actuals(self) -> bool:
        return self.actual_return is not None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
