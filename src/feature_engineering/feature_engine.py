"""
Feature engine: turns one symbol's ordered bar series into feature vectors
"""

from typing import Dict, List, Optional, Sequence

import numpy as np
import pandas as pd

from src.data_collector.config import FeatureEngineeringConfig, feature_config
from src.data_collector.market_data.data_validator import Bar
from src.exceptions import InsufficientDataError
from src.feature_engineering.feature_vector import FEATURE_COLUMNS, FeatureVector
from src.feature_engineering.technical_indicators import indicators as ind
from src.utils.core.logger import get_logger

logger = get_logger(__name__, utility="feature_engineering")


def _arrays(bars: Sequence[Bar]) -> Dict[str, np.ndarray]:
    return {
        "open": np.array([b.open for b in bars], dtype=float),
        "high": np.array([b.high for b in bars], dtype=float),
        "low": np.array([b.low for b in bars], dtype=float),
        "close": np.array([b.close for b in bars], dtype=float),
        "volume": np.array([b.volume for b in bars], dtype=float),
    }


class FeatureEngine:
    """
    Computes fixed-width technical feature vectors per bar.

    Input must be a single symbol's bars in ascending date order; the engine
    checks the symbol but does not re-sort.
    """

    def __init__(self, config: Optional[FeatureEngineeringConfig] = None):
        self.config = config or feature_config
        macd_params = self.config.MACD_PARAMS
        self.fast, self.slow, self.signal = macd_params["fast"], macd_params["slow"], macd_params["signal"]
        self.bb_period = self.config.BOLLINGER_PARAMS["period"]
        self.bb_std = self.config.BOLLINGER_PARAMS["std"]

    @staticmethod
    def _check_single_symbol(bars: Sequence[Bar]) -> str:
        symbols = {bar.symbol for bar in bars}
        if len(symbols) != 1:
            raise ValueError(f"Feature generation expects one symbol per call, got {sorted(symbols)}")
        return symbols.pop()

    def generate(self, bars: Sequence[Bar]) -> List[FeatureVector]:
        """
        Build labeled feature vectors for every bar with a full lookback.

        Rows run from index WARMUP_BARS to the second-to-last bar, since the
        last bar has no next day to label it. N bars give N - 51 rows.

        Args:
            bars: One symbol's bars, oldest first

        Returns:
            Feature vectors in date order

        Raises:
            InsufficientDataError: Fewer than MIN_BARS_FOR_FEATURES bars
            ValueError: Bars from more than one symbol
        """
        required = self.config.MIN_BARS_FOR_FEATURES
        if len(bars) < required:
            raise InsufficientDataError(
                f"Need at least {required} bars for feature generation, got {len(bars)}",
                required=required,
                available=len(bars),
            )
        symbol = self._check_single_symbol(bars)
        data = _arrays(bars)
        close = data["close"]

        # MACD line once per series; the signal EMA reads from it
        macd_line = ind.macd_line_series(close, self.fast, self.slow)

        vectors: List[FeatureVector] = []
        for i in range(self.config.WARMUP_BARS, len(bars) - 1):
            vector = self._vector_at(symbol, bars[i], data, i, macd_line)
            nxt = bars[i + 1]
            vector.next_day_return = (nxt.close - bars[i].close) / bars[i].close
            vector.next_day_volatility = (nxt.high - nxt.low) / nxt.close
            vectors.append(vector)

        logger.info(f"Generated {len(vectors)} feature vectors for {symbol} from {len(bars)} bars")
        return vectors

    def _vector_at(
        self, symbol: str, bar: Bar, data: Dict[str, np.ndarray], i: int, macd_line: np.ndarray
    ) -> FeatureVector:
        close, volume = data["close"], data["volume"]
        lags = self.config.RETURN_LAGS
        sma = self.config.SMA_PERIODS
        vol_periods = self.config.VOLUME_PERIODS

        return FeatureVector(
            symbol=symbol,
            date=bar.date,
            open=bar.open,
            high=bar.high,
            low=bar.low,
            close=bar.close,
            volume=bar.volume,
            return_1d=ind.period_return(close, i, lags[0]),
            return_5d=ind.period_return(close, i, lags[1]),
            return_20d=ind.period_return(close, i, lags[2]),
            sma_ratio_5=ind.sma_ratio(close, i, sma[0]),
            sma_ratio_10=ind.sma_ratio(close, i, sma[1]),
            sma_ratio_20=ind.sma_ratio(close, i, sma[2]),
            sma_ratio_50=ind.sma_ratio(close, i, sma[3]),
            rsi_14=ind.rsi(close, i, self.config.RSI_PERIOD),
            macd=float(macd_line[i]),
            macd_signal=ind.ema(macd_line, i, self.signal),
            bollinger_position=ind.bollinger_position(close, i, self.bb_period, self.bb_std),
            volume_ratio_20=ind.volume_ratio(volume, i, vol_periods["long"]),
            volume_ma_ratio=ind.volume_ratio(volume, i, vol_periods["short"]),
            volatility_20=ind.volatility(close, i, self.config.VOLATILITY_PERIOD),
            high_low_ratio=ind.high_low_ratio(data["high"], data["low"], close, i),
        )

    def latest_vector(self, bars: Sequence[Bar]) -> FeatureVector:
        """
        Unlabeled feature vector for the last bar, with windows capped to the history available.

        Used at prediction time, where the series may be shorter than the
        training warm-up.
        """
        if len(bars) < 2:
            raise InsufficientDataError("Need at least 2 bars for a feature vector", required=2, available=len(bars))
        symbol = self._check_single_symbol(bars)
        data = _arrays(bars)
        close, volume = data["close"], data["volume"]
        n = len(bars)
        i = n - 1

        def cap(period: int) -> int:
            return max(1, min(period, i))

        fast, slow = cap(self.fast), cap(self.slow)
        signal = min(self.signal, i - max(fast, slow))
        macd_value = ind.macd(close, i, fast, slow)
        macd_signal = ind.macd_signal(close, i, fast, slow, signal) if signal > 0 else macd_value

        lags = self.config.RETURN_LAGS
        sma = self.config.SMA_PERIODS
        vol_periods = self.config.VOLUME_PERIODS
        bar = bars[i]
        return FeatureVector(
            symbol=symbol,
            date=bar.date,
            open=bar.open,
            high=bar.high,
            low=bar.low,
            close=bar.close,
            volume=bar.volume,
            return_1d=ind.period_return(close, i, cap(lags[0])),
            return_5d=ind.period_return(close, i, cap(lags[1])),
            return_20d=ind.period_return(close, i, cap(lags[2])),
            sma_ratio_5=ind.sma_ratio(close, i, min(sma[0], n)),
            sma_ratio_10=ind.sma_ratio(close, i, min(sma[1], n)),
            sma_ratio_20=ind.sma_ratio(close, i, min(sma[2], n)),
            sma_ratio_50=ind.sma_ratio(close, i, min(sma[3], n)),
            rsi_14=ind.rsi(close, i, cap(self.config.RSI_PERIOD)),
            macd=macd_value,
            macd_signal=macd_signal,
            bollinger_position=ind.bollinger_position(close, i, min(self.bb_period, n), self.bb_std),
            volume_ratio_20=ind.volume_ratio(volume, i, min(vol_periods["long"], n)),
            volume_ma_ratio=ind.volume_ratio(volume, i, min(vol_periods["short"], n)),
            volatility_20=ind.volatility(close, i, min(self.config.VOLATILITY_PERIOD, n)),
            high_low_ratio=ind.high_low_ratio(data["high"], data["low"], close, i),
        )

    def generate_many(self, bars_by_symbol: Dict[str, Sequence[Bar]]) -> Dict[str, List[FeatureVector]]:
        """Generate per symbol, skipping symbols with too little history"""
        result: Dict[str, List[FeatureVector]] = {}
        for symbol, bars in bars_by_symbol.items():
            try:
                result[symbol] = self.generate(bars)
            except InsufficientDataError as e:
                logger.warning(f"Skipping {symbol}: {e}")
        return result

    @staticmethod
    def to_frame(vectors: Sequence[FeatureVector]) -> pd.DataFrame:
        """Feature vectors as a DataFrame indexed by (symbol, date)"""
        if not vectors:
            return pd.DataFrame(columns=["symbol", "date", *FEATURE_COLUMNS])
        frame = pd.DataFrame([v.to_dict() for v in vectors])
        return frame.set_index(["symbol", "date"])
