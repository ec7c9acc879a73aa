"""
Pipeline orchestrator: load bars -> engineer features -> train -> predict -> persist
"""

import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Set, Tuple, Union

from src.data_collector.market_data.csv_source import RawBarSource
from src.data_collector.market_data.data_fetcher import RateLimitedMarketFetcher
from src.data_collector.market_data.data_validator import Bar
from src.database.market_data_store import MarketDataStore
from src.exceptions import InsufficientDataError
from src.feature_engineering.feature_engine import FeatureEngine
from src.feature_engineering.feature_vector import FeatureVector
from src.models.prediction_engine import PredictionEngine, TrainingReport
from src.models.prediction_result import PredictionResult
from src.utils.core.logger import get_logger

logger = get_logger(__name__, utility="pipeline")

ACCURACY_CHECK_LIMIT = 5
GOOD_ERROR_THRESHOLD = 0.05
FAIR_ERROR_THRESHOLD = 0.10


class PipelineStats:
    """Counters and step timings for one pipeline run"""

    def __init__(self):
        self.start_time = datetime.now()
        self.end_time: Optional[datetime] = None
        self.bars_loaded = 0
        self.bars_stored = 0
        self.feature_vectors = 0
        self.symbols_processed = 0
        self.predictions_saved = 0
        self.step_seconds: Dict[str, float] = {}
        self.errors: List[str] = []

    def finish(self) -> None:
        self.end_time = datetime.now()

    @property
    def duration(self) -> timedelta:
        end = self.end_time or datetime.now()
        return end - self.start_time

    def to_dict(self) -> Dict[str, Any]:
        return {
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration_seconds": self.duration.total_seconds(),
            "bars_loaded": self.bars_loaded,
            "bars_stored": self.bars_stored,
            "feature_vectors": self.feature_vectors,
            "symbols_processed": self.symbols_processed,
            "predictions_saved": self.predictions_saved,
            "step_seconds": dict(self.step_seconds),
            "errors": self.errors[:10],
        }


@dataclass
class PipelineResult:
    prediction: Optional[PredictionResult]
    training: Optional[TrainingReport]
    stats: PipelineStats
    predictions: List[PredictionResult] = field(default_factory=list)
    failures: List[Tuple[str, Exception]] = field(default_factory=list)


@dataclass
class AccuracyCheck:
    symbol: str
    predicted_price: float
    actual_price: float
    error_pct: float
    rating: str


def rate_error(error_pct: float) -> str:
    if error_pct < GOOD_ERROR_THRESHOLD:
        return "GOOD"
    if error_pct < FAIR_ERROR_THRESHOLD:
        return "FAIR"
    return "POOR"


class PipelineOrchestrator:
    """
    Runs the prediction pipeline synchronously and fails fast.

    Any step's exception propagates unchanged; retries belong to the fetcher.
    Bars, features and predictions are committed separately, so a failed run
    is reconciled by running it again.
    """

    def __init__(
        self,
        store: MarketDataStore,
        source: Optional[RawBarSource] = None,
        fetcher: Optional[RateLimitedMarketFetcher] = None,
        feature_engine: Optional[FeatureEngine] = None,
        prediction_engine: Optional[PredictionEngine] = None,
    ):
        self.store = store
        self.source = source or RawBarSource()
        self.fetcher = fetcher
        self.feature_engine = feature_engine or FeatureEngine()
        self.prediction_engine = prediction_engine or PredictionEngine(feature_engine=self.feature_engine)

    @contextmanager
    def _step(self, stats: PipelineStats, name: str):
        started = time.perf_counter()
        logger.info(f"Step {name} started")
        try:
            yield
        except Exception as e:
            stats.errors.append(f"{name}: {e}")
            logger.error(f"Step {name} failed: {type(e).__name__}: {e}")
            raise
        finally:
            stats.step_seconds[name] = round(time.perf_counter() - started, 3)
        logger.info(f"Step {name} finished in {stats.step_seconds[name]}s")

    def _load_csv(self, csv_path: Union[str, Path], default_symbol: Optional[str], stats: PipelineStats) -> Set[str]:
        """Stream a CSV file into the store batch by batch; returns the symbols seen"""
        symbols: Set[str] = set()
        for bars in self.source.stream_batches(csv_path, default_symbol=default_symbol):
            stats.bars_loaded += len(bars)
            stats.bars_stored += self.store.save_bars(bars)["stored_count"]
            symbols.update(bar.symbol for bar in bars)
        return symbols

    def _load_remote(
        self, symbols: Sequence[str], start: date, end: date, stats: PipelineStats,
        cancel_event: Optional[threading.Event] = None,
    ) -> Set[str]:
        if self.fetcher is None:
            raise ValueError("No market data fetcher configured for remote loading")
        if len(symbols) == 1:
            fetched = {symbols[0]: self.fetcher.fetch_historical(symbols[0], start, end)}
        else:
            fetched = self.fetcher.fetch_batch(symbols, start, end, cancel_event=cancel_event)
        loaded: Set[str] = set()
        for symbol, bars in fetched.items():
            stats.bars_loaded += len(bars)
            if bars:
                stats.bars_stored += self.store.save_bars(bars)["stored_count"]
                loaded.add(symbol)
        return loaded

    def _engineer(
        self, symbols: Sequence[str], start: Optional[date], end: Optional[date], stats: PipelineStats,
        skip_short: bool,
    ) -> List[FeatureVector]:
        """Generate and store features one symbol at a time"""
        vectors: List[FeatureVector] = []
        for symbol in sorted(symbols):
            bars = self.store.get_bars(symbol, start, end)
            try:
                generated = self.feature_engine.generate(bars)
            except InsufficientDataError as e:
                if not skip_short:
                    raise
                logger.warning(f"Not enough history for {symbol}, excluded from training: {e}")
                continue
            self.store.save_feature_vectors(generated)
            vectors.extend(generated)
            stats.symbols_processed += 1
        stats.feature_vectors = len(vectors)
        return vectors

    def run(
        self,
        symbol: str,
        csv_path: Optional[Union[str, Path]] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> PipelineResult:
        """
        Run the full pipeline for one target symbol.

        Bars come from `csv_path` when given, otherwise from the fetcher when
        one is configured, otherwise from what the store already holds.
        Features for every loaded symbol feed the training set.

        Args:
            symbol: Symbol to predict
            csv_path: Optional CSV file to ingest first
            start: First bar date used (and fetched)
            end: Last bar date used (and fetched)

        Returns:
            PipelineResult with the stored prediction and training report
        """
        symbol = symbol.strip().upper()
        stats = PipelineStats()
        logger.info(f"Starting prediction pipeline for {symbol}")

        with self._step(stats, "load"):
            if csv_path is not None:
                symbols = self._load_csv(csv_path, symbol, stats)
            elif self.fetcher is not None:
                fetch_start = start or date.today() - timedelta(days=365)
                fetch_end = end or date.today()
                symbols = self._load_remote([symbol], fetch_start, fetch_end, stats)
            else:
                symbols = {symbol} if self.store.has_data_for_symbol(symbol) else set()
            symbols.add(symbol)

        with self._step(stats, "features"):
            # The target symbol must have enough history; others are optional
            vectors = self._engineer([symbol], start, end, stats, skip_short=False)
            vectors += self._engineer([s for s in symbols if s != symbol], start, end, stats, skip_short=True)
            stats.feature_vectors = len(vectors)

        with self._step(stats, "train"):
            report = self.prediction_engine.train(vectors)

        with self._step(stats, "predict"):
            bars = self.store.get_bars(symbol, start, end)
            prediction = self.prediction_engine.predict(bars, symbol)

        with self._step(stats, "persist"):
            self.store.save_prediction(prediction)
            stats.predictions_saved = 1

        stats.finish()
        logger.info(f"Pipeline for {symbol} complete: {stats.to_dict()}")
        return PipelineResult(prediction=prediction, training=report, stats=stats, predictions=[prediction])

    def run_many(
        self,
        symbols: Sequence[str],
        start: date,
        end: date,
        cancel_event: Optional[threading.Event] = None,
    ) -> PipelineResult:
        """
        Fetch, train on and predict several symbols.

        Symbols that fail to fetch or predict are reported in `failures`
        instead of aborting the run.
        """
        stats = PipelineStats()
        wanted = [s.strip().upper() for s in symbols]

        with self._step(stats, "load"):
            loaded = self._load_remote(wanted, start, end, stats, cancel_event=cancel_event)
        with self._step(stats, "features"):
            vectors = self._engineer(sorted(loaded), start, end, stats, skip_short=True)
        with self._step(stats, "train"):
            report = self.prediction_engine.train(vectors)
        with self._step(stats, "predict"):
            bars_by_symbol = {s: self.store.get_bars(s, start, end) for s in wanted}
            predictions, failures = self.prediction_engine.predict_batch(bars_by_symbol, wanted)
        with self._step(stats, "persist"):
            for prediction in predictions:
                self.store.save_prediction(prediction)
            stats.predictions_saved = len(predictions)

        stats.errors.extend(f"{s}: {e}" for s, e in failures)
        stats.finish()
        return PipelineResult(
            prediction=predictions[0] if predictions else None,
            training=report,
            stats=stats,
            predictions=predictions,
            failures=failures,
        )

    def train_from_store(
        self, symbols: Optional[Sequence[str]] = None, start: Optional[date] = None, end: Optional[date] = None
    ) -> TrainingReport:
        """Retrain from bars already in the store"""
        stats = PipelineStats()
        vectors = self._engineer(symbols or self.store.get_symbols(), start, end, stats, skip_short=True)
        return self.prediction_engine.train(vectors)

    def check_accuracy(
        self,
        symbols: Optional[Sequence[str]] = None,
        bars_by_symbol: Optional[Dict[str, Sequence[Bar]]] = None,
    ) -> List[AccuracyCheck]:
        """
        Quick sanity check of the current model on up to five symbols.

        Predicts each symbol's last close from all earlier bars and rates the
        relative error: below 5% GOOD, below 10% FAIR, otherwise POOR.

        Args:
            symbols: Symbols to check, defaults to the mapping's keys or the stored symbols
            bars_by_symbol: Bars to check against instead of the stored ones
        """
        if symbols is None:
            symbols = list(bars_by_symbol) if bars_by_symbol is not None else self.store.get_symbols()
        checks: List[AccuracyCheck] = []
        for symbol in list(symbols)[:ACCURACY_CHECK_LIMIT]:
            if bars_by_symbol is not None:
                bars: List[Bar] = sorted(bars_by_symbol.get(symbol, []), key=lambda b: b.date)
            else:
                bars = self.store.get_bars(symbol)
            try:
                prediction = self.prediction_engine.predict(bars[:-1], symbol)
            except InsufficientDataError as e:
                logger.warning(f"Accuracy check skipped for {symbol}: {e}")
                continue
            actual = bars[-1].close
            error_pct = abs(prediction.predicted_price - actual) / actual
            check = AccuracyCheck(symbol, prediction.predicted_price, actual, error_pct, rate_error(error_pct))
            logger.info(
                f"{symbol}: predicted {check.predicted_price:.2f}, actual {actual:.2f}, "
                f"error {error_pct:.2%} -> {check.rating}"
            )
            checks.append(check)
        return checks

    def backfill_actuals(self, symbol: str) -> int:
        """Fill realised return/volatility for stored predictions whose target bar now exists"""
        symbol = symbol.strip().upper()
        updated = 0
        for prediction in self.store.get_pending_predictions(symbol):
            bars = {b.date: b for b in self.store.get_bars(symbol, prediction.prediction_date, prediction.target_date)}
            base, target = bars.get(prediction.prediction_date), bars.get(prediction.target_date)
            if base is None or target is None:
                continue
            actual_return = (target.close - base.close) / base.close
            actual_volatility = (target.high - target.low) / target.close
            updated += self.store.update_actuals(symbol, prediction.target_date, actual_return, actual_volatility)
        logger.info(f"Back-filled actuals for {updated} {symbol} predictions")
        return updated
