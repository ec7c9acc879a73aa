"""
Point-in-time technical indicators over a single symbol's series.

Every function evaluates the indicator at index `i` of chronologically
sorted numpy arrays, looking only at values up to and including `i`.
Degenerate windows (zero mean, zero variance, no price movement) return a
neutral value instead of NaN.
"""

import numpy as np

NEUTRAL_RATIO = 1.0
NEUTRAL_RSI = 50.0
NEUTRAL_BOLLINGER = 0.5


def _window(values: np.ndarray, i: int, period: int) -> np.ndarray:
    if period < 1 or i - period + 1 < 0:
        raise ValueError(f"Window of {period} ending at index {i} starts before the series")
    return values[i - period + 1 : i + 1]


def period_return(close: np.ndarray, i: int, lag: int) -> float:
    """(close[i] - close[i-lag]) / close[i-lag]"""
    previous = close[i - lag]
    if previous == 0:
        return 0.0
    return float((close[i] - previous) / previous)


def sma_ratio(close: np.ndarray, i: int, period: int) -> float:
    """close[i] over the mean of the trailing `period` closes, ending at i"""
    mean = _window(close, i, period).mean()
    if mean == 0:
        return NEUTRAL_RATIO
    return float(close[i] / mean)


def rsi(close: np.ndarray, i: int, period: int = 14) -> float:
    """
    Relative strength index from the `period` deltas ending at i.

    50 when the window has no movement at all, 100 with no losses and 0 with
    no gains.
    """
    if i - period < 0:
        raise ValueError(f"RSI({period}) at index {i} needs {period + 1} closes")
    deltas = np.diff(close[i - period : i + 1])
    gains = deltas[deltas > 0].sum()
    losses = -deltas[deltas < 0].sum()
    if gains + losses == 0:
        return NEUTRAL_RSI
    if losses == 0:
        return 100.0
    rs = gains / losses
    return float(100.0 - 100.0 / (1.0 + rs))


def ema(values: np.ndarray, i: int, period: int) -> float:
    """
    Exponential moving average at i.

    Seeded with values[i - period] and updated over values[i-period+1 .. i]
    with k = 2 / (period + 1).
    """
    if i - period < 0:
        raise ValueError(f"EMA({period}) at index {i} needs {period + 1} values")
    k = 2.0 / (period + 1)
    result = float(values[i - period])
    for value in values[i - period + 1 : i + 1]:
        result = float(value) * k + result * (1.0 - k)
    return result


def macd(close: np.ndarray, i: int, fast: int = 12, slow: int = 26) -> float:
    """EMA(fast) - EMA(slow) at i"""
    return ema(close, i, fast) - ema(close, i, slow)


def macd_line_series(close: np.ndarray, fast: int = 12, slow: int = 26) -> np.ndarray:
    """MACD at every index where it is defined, NaN before that"""
    line = np.full(len(close), np.nan)
    for j in range(max(fast, slow), len(close)):
        line[j] = macd(close, j, fast, slow)
    return line


def macd_signal(close: np.ndarray, i: int, fast: int = 12, slow: int = 26, signal: int = 9) -> float:
    """EMA(signal) of the MACD line at i, recomputing each MACD value it uses"""
    start = i - signal
    if start - max(fast, slow) < 0:
        raise ValueError(f"MACD signal at index {i} needs {max(fast, slow) + signal + 1} closes")
    line = np.array([macd(close, j, fast, slow) for j in range(start, i + 1)])
    return ema(line, signal, signal)


def bollinger_position(close: np.ndarray, i: int, period: int = 20, num_std: float = 2.0) -> float:
    """
    Position of close[i] inside mean +/- num_std * stdev of the trailing window.

    0.5 for a flat window. Not clamped: prices outside the bands fall
    outside [0, 1].
    """
    window = _window(close, i, period)
    std = window.std()
    if std == 0:
        return NEUTRAL_BOLLINGER
    lower = window.mean() - num_std * std
    return float((close[i] - lower) / (2 * num_std * std))


def volatility(close: np.ndarray, i: int, period: int = 20) -> float:
    """Population standard deviation of the trailing `period` closes"""
    return float(_window(close, i, period).std())


def volume_ratio(volume: np.ndarray, i: int, period: int) -> float:
    """volume[i] over the mean volume of the trailing `period` bars"""
    mean = _window(volume, i, period).mean()
    if mean == 0:
        return NEUTRAL_RATIO
    return float(volume[i] / mean)


def high_low_ratio(high: np.ndarray, low: np.ndarray, close: np.ndarray, i: int) -> float:
    """Intraday range relative to the close"""
    if close[i] == 0:
        return 0.0
    return float((high[i] - low[i]) / close[i])
