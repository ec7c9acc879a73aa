"""
Technical Indicators Package

Point-in-time indicator functions used by FeatureEngine:
returns, moving-average ratios, RSI, EMA/MACD, Bollinger position,
volatility and volume ratios.
"""

from src.feature_engineering.technical_indicators.indicators import (
    period_return,
    sma_ratio,
    rsi,
    ema,
    macd,
    macd_line_series,
    macd_signal,
    bollinger_position,
    volatility,
    volume_ratio,
    high_low_ratio,
)

__all__ = [
    "period_return",
    "sma_ratio",
    "rsi",
    "ema",
    "macd",
    "macd_line_series",
    "macd_signal",
    "bollinger_position",
    "volatility",
    "volume_ratio",
    "high_low_ratio",
]
