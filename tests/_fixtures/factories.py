import csv
from datetime import date
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

import pandas as pd
from polyfactory.factories.pydantic_factory import ModelFactory
from polyfactory.fields import Use

from src.data_collector.market_data.data_validator import Bar
from src.feature_engineering.feature_vector import FeatureVector


class BarFactory(ModelFactory[Bar]):
    """Bars with fixed, mutually consistent prices; override fields per test"""

    __model__ = Bar

    symbol = "AAA"
    date = Use(lambda: date(2024, 1, 2))
    open = 100.0
    high = 101.0
    low = 99.0
    close = 100.5
    adjusted_close = Use(lambda: None)
    volume = 1000


def make_bars(
    symbol: str = "AAA",
    n: int = 60,
    start: date = date(2024, 1, 2),
    closes: Optional[Sequence[float]] = None,
    step: float = 0.5,
) -> List[Bar]:
    """Business-day bars for one symbol; rising by `step` unless `closes` is given"""
    days = pd.bdate_range(start, periods=n)
    prices = list(closes) if closes is not None else [100.0 + step * i for i in range(n)]
    bars = []
    for i, (day, close) in enumerate(zip(days, prices)):
        open_ = close - 0.2 if step >= 0 else close + 0.2
        bars.append(
            BarFactory.build(
                symbol=symbol,
                date=day.date(),
                open=open_,
                high=max(open_, close) + 0.5,
                low=min(open_, close) - 0.5,
                close=close,
                volume=1000 + 10 * i,
            )
        )
    return bars


def make_feature_vector(symbol: str = "AAA", day: date = date(2024, 3, 1), **overrides) -> FeatureVector:
    """Labeled feature vector built from a coherent bar"""
    values = dict(
        symbol=symbol,
        date=day,
        open=100.0,
        high=101.0,
        low=99.0,
        close=100.5,
        volume=1000,
        next_day_return=0.004,
        next_day_volatility=0.012,
    )
    values.update(overrides)
    return FeatureVector(**values)


def write_csv(path: Path, header: Sequence[str], rows: Iterable[Sequence[object]]) -> Path:
    with open(path, "w", newline="") as handle:
        writer = csv.writer(handle)
        writer.writerow(header)
        for row in rows:
            writer.writerow(row)
    return path
