"""
Prediction engine: model training, persistence and next-day predictions.

The engine owns exactly one current model, held as an explicit ModelHandle
and persisted through an ArtifactStore. A missing artifact with no model in
memory means "untrained".
"""

import math
import os
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

import joblib
import numpy as np
import pandas as pd
from sklearn.ensemble import RandomForestRegressor
from sklearn.metrics import mean_squared_error, r2_score

from src.data_collector.config import PredictionConfig, prediction_config
from src.data_collector.market_data.data_validator import Bar, parse_date
from src.exceptions import (
    EmptyTrainingSetError,
    InsufficientDataError,
    ModelNotTrainedError,
    NoValidDataAfterCleaningError,
)
from src.feature_engineering.feature_engine import FeatureEngine
from src.feature_engineering.feature_vector import FEATURE_COLUMNS, LABEL_COLUMNS, FeatureVector
from src.models.prediction_result import PredictionResult
from src.utils.core.logger import get_logger

logger = get_logger(__name__, utility="predictor")

BarsInput = Union[Sequence[Bar], Mapping[str, Sequence[Bar]]]


@dataclass(frozen=True)
class ModelHandle:
    """A fitted estimator together with the schema and version it was trained with"""

    estimator: Any
    model_version: str
    feature_names: Tuple[str, ...]
    trained_at: datetime
    training_rows: int
    metrics: Dict[str, float] = field(default_factory=dict)


@dataclass
class TrainingReport:
    rows_received: int
    rows_removed: int
    rows_used: int
    model_version: str
    metrics: Dict[str, float]
    artifact_path: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rows_received": self.rows_received,
            "rows_removed": self.rows_removed,
            "rows_used": self.rows_used,
            "model_version": self.model_version,
            "metrics": dict(self.metrics),
            "artifact_path": self.artifact_path,
        }


class ArtifactStore:
    """File store for ModelHandle objects, serialized with joblib"""

    def __init__(self, path: Optional[str] = None):
        self.path = path or prediction_config.model_path

    def exists(self) -> bool:
        return os.path.isfile(self.path)

    def save(self, handle: ModelHandle) -> str:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        joblib.dump(handle, self.path)
        logger.info(f"Model {handle.model_version} saved to {self.path}")
        return self.path

    def load(self) -> Optional[ModelHandle]:
        """The stored handle, or None when no artifact exists"""
        if not self.exists():
            return None
        handle = joblib.load(self.path)
        logger.info(f"Model {handle.model_version} loaded from {self.path}")
        return handle


def _is_valid_training_row(vector: FeatureVector) -> bool:
    prices = (vector.open, vector.high, vector.low, vector.close)
    if any(p is None or p <= 0 for p in prices) or vector.volume is None or vector.volume <= 0:
        return False
    if vector.high < vector.low or vector.high < vector.open or vector.high < vector.close:
        return False
    if vector.low > vector.open or vector.low > vector.close:
        return False
    if not vector.symbol:
        return False
    try:
        parse_date(vector.date)
    except (TypeError, ValueError):
        return False
    if not vector.is_labeled:
        return False
    values = (*vector.features(), vector.next_day_return, vector.next_day_volatility)
    return all(v is not None and math.isfinite(v) for v in values)


def clean_training_rows(vectors: Sequence[FeatureVector]) -> Tuple[List[FeatureVector], int]:
    """
    Drop rows built from corrupt bars or with unusable values.

    Removes rows with non-positive prices or volume, high/low
    inconsistencies, a blank symbol or unparsable date, missing labels or
    non-finite features.

    Returns:
        Tuple of (kept rows, removed count)
    """
    kept = [v for v in vectors if _is_valid_training_row(v)]
    return kept, len(vectors) - len(kept)


def _select_bars(bars: BarsInput, symbol: str) -> List[Bar]:
    if isinstance(bars, Mapping):
        selected = list(bars.get(symbol, []))
    else:
        selected = [b for b in bars if b.symbol == symbol]
    return sorted(selected, key=lambda b: b.date)


class PredictionEngine:
    """
    Trains a multi-output random forest on feature vectors and predicts the
    next day's return and volatility.

    States: untrained (no handle, no artifact), trained (handle in memory or
    loadable from the artifact store). Prediction never mutates the handle.
    """

    def __init__(
        self,
        artifact_store: Optional[ArtifactStore] = None,
        feature_engine: Optional[FeatureEngine] = None,
        config: Optional[PredictionConfig] = None,
    ):
        self.config = config or prediction_config
        self.artifact_store = artifact_store or ArtifactStore(self.config.model_path)
        self.feature_engine = feature_engine or FeatureEngine()
        self._handle: Optional[ModelHandle] = None

    @property
    def handle(self) -> Optional[ModelHandle]:
        return self._handle

    def is_trained(self) -> bool:
        return self._handle is not None or self.artifact_store.exists()

    def _create_model(self) -> RandomForestRegressor:
        return RandomForestRegressor(
            n_estimators=self.config.N_ESTIMATORS,
            max_depth=self.config.MAX_DEPTH,
            min_samples_leaf=1,
            random_state=self.config.RANDOM_STATE,
            n_jobs=None,
        )

    def _evaluate(self, x: pd.DataFrame, y: pd.DataFrame) -> Dict[str, float]:
        """Chronological hold-out evaluation; empty when there are too few rows"""
        n_rows = len(x)
        if n_rows < self.config.MIN_EVALUATION_ROWS:
            logger.info(f"Skipping evaluation, only {n_rows} training rows")
            return {}

        n_test = max(1, int(round(n_rows * self.config.TEST_FRACTION)))
        x_train, x_test = x.iloc[:-n_test], x.iloc[-n_test:]
        y_train, y_test = y.iloc[:-n_test], y.iloc[-n_test:]

        model = self._create_model()
        model.fit(x_train, y_train)
        predicted = model.predict(x_test)

        metrics: Dict[str, float] = {"test_rows": float(n_test)}
        for idx, label in enumerate(LABEL_COLUMNS):
            metrics[f"{label}_rmse"] = float(np.sqrt(mean_squared_error(y_test.iloc[:, idx], predicted[:, idx])))
            if n_test >= 2:
                metrics[f"{label}_r2"] = float(r2_score(y_test.iloc[:, idx], predicted[:, idx]))
        return metrics

    def train(self, vectors: Sequence[FeatureVector]) -> TrainingReport:
        """
        Clean, evaluate, fit and persist a new model, replacing the current one.

        Args:
            vectors: Labeled feature vectors, any mix of symbols

        Returns:
            TrainingReport with row counts and hold-out metrics

        Raises:
            EmptyTrainingSetError: No vectors given
            NoValidDataAfterCleaningError: Cleaning removed every row
        """
        if not vectors:
            raise EmptyTrainingSetError("No feature vectors to train on")

        cleaned, removed = clean_training_rows(vectors)
        logger.info(f"Training data cleaning removed {removed} of {len(vectors)} rows")
        if not cleaned:
            raise NoValidDataAfterCleaningError(
                f"All {len(vectors)} training rows were removed by cleaning", removed=removed
            )

        cleaned.sort(key=lambda v: (v.date, v.symbol))
        x = pd.DataFrame([v.features() for v in cleaned], columns=list(FEATURE_COLUMNS))
        y = pd.DataFrame(
            [(v.next_day_return, v.next_day_volatility) for v in cleaned], columns=list(LABEL_COLUMNS)
        )

        metrics = self._evaluate(x, y)
        if metrics:
            logger.info(
                f"Hold-out RMSE return={metrics['next_day_return_rmse']:.6f}, "
                f"volatility={metrics['next_day_volatility_rmse']:.6f}"
            )

        model = self._create_model()
        model.fit(x, y)

        handle = ModelHandle(
            estimator=model,
            model_version=self.config.MODEL_VERSION,
            feature_names=tuple(FEATURE_COLUMNS),
            trained_at=datetime.now(),
            training_rows=len(cleaned),
            metrics=metrics,
        )
        path = self.artifact_store.save(handle)
        self._handle = handle

        logger.info(f"Model {handle.model_version} trained on {len(cleaned)} rows")
        return TrainingReport(
            rows_received=len(vectors),
            rows_removed=removed,
            rows_used=len(cleaned),
            model_version=handle.model_version,
            metrics=metrics,
            artifact_path=path,
        )

    def _require_model(self) -> ModelHandle:
        if self._handle is None:
            self._handle = self.artifact_store.load()
        if self._handle is None:
            raise ModelNotTrainedError("No trained model in memory or in the artifact store")
        return self._handle

    def _confidence(self, handle: ModelHandle, x: np.ndarray, predicted_return: float) -> float:
        """Share of trees agreeing with the sign of the ensemble's return forecast"""
        estimators = getattr(handle.estimator, "estimators_", None)
        if not estimators:
            return 0.5
        tree_returns = np.array([tree.predict(x)[0][0] for tree in estimators])
        agreeing = np.sign(tree_returns) == np.sign(predicted_return)
        return float(agreeing.mean())

    def predict(self, bars: BarsInput, symbol: str) -> PredictionResult:
        """
        Predict the next trading day for `symbol` from its most recent bars.

        Args:
            bars: Bars for one or more symbols, or a symbol -> bars mapping
            symbol: Symbol to predict

        Returns:
            PredictionResult targeting the next business day after the last bar

        Raises:
            InsufficientDataError: Fewer than MIN_BARS_FOR_PREDICTION bars for the symbol
            ModelNotTrainedError: No model in memory and none on disk
        """
        symbol = symbol.strip().upper()
        series = _select_bars(bars, symbol)
        required = self.config.MIN_BARS_FOR_PREDICTION
        if len(series) < required:
            raise InsufficientDataError(
                f"Need at least {required} bars to predict {symbol}, got {len(series)}",
                required=required,
                available=len(series),
            )

        handle = self._require_model()
        vector = self.feature_engine.latest_vector(series)
        x = pd.DataFrame([vector.features()], columns=list(handle.feature_names))
        raw_return, raw_volatility = handle.estimator.predict(x)[0]

        predicted_volatility = max(float(raw_volatility), self.config.VOLATILITY_EPSILON)
        # Keep the implied price strictly positive
        predicted_return = max(float(raw_return), -1.0 + self.config.VOLATILITY_EPSILON)
        current_price = series[-1].close
        predicted_price = max(current_price * (1.0 + predicted_return), self.config.MIN_PREDICTED_PRICE)

        last_date: date = series[-1].date
        target_date = (pd.Timestamp(last_date) + pd.offsets.BDay(1)).date()

        result = PredictionResult(
            symbol=symbol,
            prediction_date=last_date,
            target_date=target_date,
            current_price=current_price,
            predicted_price=predicted_price,
            predicted_return=predicted_return,
            predicted_volatility=predicted_volatility,
            confidence_score=self._confidence(handle, x.to_numpy(), predicted_return),
            risk_adjusted_score=predicted_return / predicted_volatility,
            model_version=handle.model_version,
        )
        logger.info(
            f"{symbol} {target_date}: return={predicted_return:.4%}, volatility={predicted_volatility:.4f}, "
            f"confidence={result.confidence_score:.2f}"
        )
        return result

    def predict_batch(
        self, bars: BarsInput, symbols: Sequence[str]
    ) -> Tuple[List[PredictionResult], List[Tuple[str, Exception]]]:
        """
        Predict several symbols; one symbol's failure never stops the others.

        Returns:
            Tuple of (results, [(symbol, error), ...])
        """
        results: List[PredictionResult] = []
        errors: List[Tuple[str, Exception]] = []
        for symbol in symbols:
            try:
                results.append(self.predict(bars, symbol))
            except Exception as e:
                logger.error(f"Prediction failed for {symbol}: {e}")
                errors.append((symbol, e))
        logger.info(f"Batch prediction: {len(results)} succeeded, {len(errors)} failed")
        return results, errors

    def needs_retraining(self, max_age_days: Optional[int] = None) -> bool:
        """True when there is no model or it is older than `max_age_days`"""
        max_age = self.config.RETRAIN_AFTER_DAYS if max_age_days is None else max_age_days
        try:
            handle = self._require_model()
        except ModelNotTrainedError:
            return True
        return (datetime.now() - handle.trained_at).days > max_age

    def get_model_info(self) -> Dict[str, Any]:
        if self._handle is None:
            return {"trained": self.is_trained(), "artifact_path": self.artifact_store.path}
        return {
            "trained": True,
            "model_version": self._handle.model_version,
            "trained_at": self._handle.trained_at.isoformat(),
            "training_rows": self._handle.training_rows,
            "features": list(self._handle.feature_names),
            "metrics": dict(self._handle.metrics),
            "artifact_path": self.artifact_store.path,
        }

    def get_feature_importance(self) -> Optional[pd.DataFrame]:
        if self._handle is None:
            return None
        importance = getattr(self._handle.estimator, "feature_importances_", None)
        if importance is None:
            return None
        return pd.DataFrame(
            {"feature": list(self._handle.feature_names), "importance": importance}
        ).sort_values("importance", ascending=False)
