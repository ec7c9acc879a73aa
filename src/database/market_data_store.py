"""
Persistence for bars, feature vectors, predictions and the API request audit log
"""

from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.engine import Engine

from src.data_collector.market_data.data_validator import Bar
from src.database.connection import build_engine, get_engine, make_session_factory, session_scope
from src.database.models import ApiRequestLogRecord, BarRecord, FeatureVectorRecord, PredictionRecord
from src.exceptions import PredictionNotFoundError
from src.feature_engineering.feature_vector import FeatureVector
from src.models.prediction_result import PredictionResult
from src.utils.batching import batch
from src.utils.core.logger import get_logger

logger = get_logger(__name__, utility="database")

# Audit rows written just before a request goes out; one per attempt
RESERVATION_RESPONSE_CODE = 0


def utc_now() -> datetime:
    """Naive UTC timestamp, the form stored in `api_request_log.request_time`"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _bar_from_record(record: BarRecord) -> Bar:
    return Bar(
        symbol=record.symbol,
        date=record.date,
        open=record.open,
        high=record.high,
        low=record.low,
        close=record.close,
        adjusted_close=record.adjusted_close,
        volume=record.volume,
    )


def _feature_vector_from_record(record: FeatureVectorRecord) -> FeatureVector:
    return FeatureVector(**{name: getattr(record, name) for name in FeatureVector.field_names()})


def _prediction_from_record(record: PredictionRecord) -> PredictionResult:
    return PredictionResult(
        symbol=record.symbol,
        prediction_date=record.prediction_date,
        target_date=record.target_date,
        current_price=record.current_price,
        predicted_price=record.predicted_price,
        predicted_return=record.predicted_return,
        predicted_volatility=record.predicted_volatility,
        confidence_score=record.confidence_score,
        risk_adjusted_score=record.risk_adjusted_score,
        model_version=record.model_version,
        actual_return=record.actual_return,
        actual_volatility=record.actual_volatility,
    )


class MarketDataStore:
    """
    SQLAlchemy-backed store for the pipeline's tables.

    Each public method runs in its own transaction, so bars, features,
    predictions and audit rows are committed independently.
    """

    def __init__(self, engine: Optional[Engine] = None, database_url: Optional[str] = None, batch_size: int = 1000):
        if engine is None:
            engine = build_engine(database_url) if database_url else get_engine()
        self.engine = engine
        self._session_factory = make_session_factory(engine)
        self.batch_size = batch_size

    # ------------------------------------------------------------------ bars

    def save_bars(self, bars: Sequence[Bar]) -> Dict[str, int]:
        """
        Insert bars, skipping (symbol, date) keys that are already stored.

        Args:
            bars: Validated bars, possibly for several symbols

        Returns:
            Dictionary with stored, skipped and processed counts
        """
        if not bars:
            logger.warning("No bars to store")
            return {"stored_count": 0, "skipped_count": 0, "total_processed": 0}

        stored = 0
        seen = set()
        with session_scope(self._session_factory) as session:
            for chunk in batch(bars, self.batch_size):
                symbols = {bar.symbol for bar in chunk}
                dates = [bar.date for bar in chunk]
                existing = {
                    (symbol, day)
                    for symbol, day in session.execute(
                        select(BarRecord.symbol, BarRecord.date).where(
                            BarRecord.symbol.in_(symbols),
                            BarRecord.date.between(min(dates), max(dates)),
                        )
                    ).all()
                }
                for bar in chunk:
                    key = (bar.symbol, bar.date)
                    if key in existing or key in seen:
                        continue
                    seen.add(key)
                    session.add(
                        BarRecord(
                            symbol=bar.symbol,
                            date=bar.date,
                            open=bar.open,
                            high=bar.high,
                            low=bar.low,
                            close=bar.close,
                            adjusted_close=bar.adjusted_close,
                            volume=bar.volume,
                        )
                    )
                    stored += 1

        skipped = len(bars) - stored
        logger.info(f"Stored {stored} bars ({skipped} duplicates skipped)")
        return {"stored_count": stored, "skipped_count": skipped, "total_processed": len(bars)}

    def get_bars(self, symbol: str, start: Optional[date] = None, end: Optional[date] = None) -> List[Bar]:
        """Bars for `symbol` in [start, end], oldest first"""
        query = select(BarRecord).where(BarRecord.symbol == symbol.upper())
        if start is not None:
            query = query.where(BarRecord.date >= start)
        if end is not None:
            query = query.where(BarRecord.date <= end)
        with session_scope(self._session_factory) as session:
            records = session.execute(query.order_by(BarRecord.date)).scalars().all()
            return [_bar_from_record(r) for r in records]

    def get_latest_date(self, symbol: str) -> Optional[date]:
        with session_scope(self._session_factory) as session:
            return session.execute(
                select(func.max(BarRecord.date)).where(BarRecord.symbol == symbol.upper())
            ).scalar_one_or_none()

    def has_data(self, symbol: str, on: date) -> bool:
        with session_scope(self._session_factory) as session:
            found = session.execute(
                select(BarRecord.id).where(BarRecord.symbol == symbol.upper(), BarRecord.date == on).limit(1)
            ).first()
            return found is not None

    def has_data_for_symbol(self, symbol: str) -> bool:
        return self.get_latest_date(symbol) is not None

    def get_symbols(self) -> List[str]:
        with session_scope(self._session_factory) as session:
            return list(
                session.execute(select(BarRecord.symbol).distinct().order_by(BarRecord.symbol)).scalars().all()
            )

    def get_data_count_by_symbol(self, start: Optional[date] = None, end: Optional[date] = None) -> Dict[str, int]:
        query = select(BarRecord.symbol, func.count(BarRecord.id)).group_by(BarRecord.symbol)
        if start is not None:
            query = query.where(BarRecord.date >= start)
        if end is not None:
            query = query.where(BarRecord.date <= end)
        with session_scope(self._session_factory) as session:
            return {symbol: count for symbol, count in session.execute(query).all()}

    def cleanup_old_data(self, cutoff: date) -> int:
        """Delete bars and feature vectors dated before `cutoff`"""
        with session_scope(self._session_factory) as session:
            bars = session.execute(delete(BarRecord).where(BarRecord.date < cutoff)).rowcount
            features = session.execute(delete(FeatureVectorRecord).where(FeatureVectorRecord.date < cutoff)).rowcount
        logger.info(f"Removed {bars} bars and {features} feature vectors older than {cutoff}")
        return bars + features

    # -------------------------------------------------------------- features

    def save_feature_vectors(self, vectors: Sequence[FeatureVector]) -> int:
        """Store feature vectors, replacing any stored row with the same (symbol, date)"""
        if not vectors:
            return 0

        latest: Dict[tuple, FeatureVector] = {}
        for vector in vectors:
            latest[(vector.symbol, vector.date)] = vector

        with session_scope(self._session_factory) as session:
            by_symbol: Dict[str, List[date]] = {}
            for symbol, day in latest:
                by_symbol.setdefault(symbol, []).append(day)
            for symbol, days in by_symbol.items():
                for chunk in batch(days, self.batch_size):
                    session.execute(
                        delete(FeatureVectorRecord).where(
                            FeatureVectorRecord.symbol == symbol, FeatureVectorRecord.date.in_(chunk)
                        )
                    )
            for vector in latest.values():
                row = vector.to_dict()
                row["sharpe_ratio"] = vector.sharpe_ratio
                row["is_high_return_low_risk"] = vector.is_high_return_low_risk
                session.add(FeatureVectorRecord(**row))

        logger.info(f"Stored {len(latest)} feature vectors")
        return len(latest)

    def get_feature_vectors(
        self, symbol: Optional[str] = None, start: Optional[date] = None, end: Optional[date] = None
    ) -> List[FeatureVector]:
        """Feature vectors ordered by symbol then date; all symbols when `symbol` is None"""
        query = select(FeatureVectorRecord)
        if symbol is not None:
            query = query.where(FeatureVectorRecord.symbol == symbol.upper())
        if start is not None:
            query = query.where(FeatureVectorRecord.date >= start)
        if end is not None:
            query = query.where(FeatureVectorRecord.date <= end)
        query = query.order_by(FeatureVectorRecord.symbol, FeatureVectorRecord.date)
        with session_scope(self._session_factory) as session:
            return [_feature_vector_from_record(r) for r in session.execute(query).scalars().all()]

    # ----------------------------------------------------------- predictions

    def save_prediction(self, prediction: PredictionResult) -> None:
        """Insert a prediction, overwriting one for the same symbol, target date and model version"""
        with session_scope(self._session_factory) as session:
            record = session.execute(
                select(PredictionRecord).where(
                    PredictionRecord.symbol == prediction.symbol,
                    PredictionRecord.target_date == prediction.target_date,
                    PredictionRecord.model_version == prediction.model_version,
                )
            ).scalar_one_or_none()
            if record is None:
                record = PredictionRecord()
                session.add(record)
            for name, value in prediction.to_dict().items():
                setattr(record, name, value)
        logger.info(
            f"Saved prediction for {prediction.symbol} -> {prediction.target_date}: "
            f"return={prediction.predicted_return:.4f}, confidence={prediction.confidence_score:.2f}"
        )

    def get_predictions(self, prediction_date: date) -> List[PredictionResult]:
        """Predictions made on `prediction_date`, best risk-adjusted score first"""
        with session_scope(self._session_factory) as session:
            records = session.execute(
                select(PredictionRecord)
                .where(PredictionRecord.prediction_date == prediction_date)
                .order_by(PredictionRecord.risk_adjusted_score.desc())
            ).scalars().all()
            return [_prediction_from_record(r) for r in records]

    def get_latest_prediction(self, symbol: str) -> Optional[PredictionResult]:
        with session_scope(self._session_factory) as session:
            record = session.execute(
                select(PredictionRecord)
                .where(PredictionRecord.symbol == symbol.upper())
                .order_by(PredictionRecord.prediction_date.desc(), PredictionRecord.id.desc())
                .limit(1)
            ).scalar_one_or_none()
            return _prediction_from_record(record) if record is not None else None

    def get_pending_predictions(self, symbol: str) -> List[PredictionResult]:
        """Predictions for `symbol` whose actuals have not been back-filled"""
        with session_scope(self._session_factory) as session:
            records = session.execute(
                select(PredictionRecord)
                .where(PredictionRecord.symbol == symbol.upper(), PredictionRecord.actual_return.is_(None))
                .order_by(PredictionRecord.target_date)
            ).scalars().all()
            return [_prediction_from_record(r) for r in records]

    def update_actuals(self, symbol: str, target_date: date, actual_return: float, actual_volatility: float) -> int:
        """
        Back-fill realised return and volatility for predictions of `symbol` on `target_date`.

        Raises:
            PredictionNotFoundError: If no such prediction is stored
        """
        with session_scope(self._session_factory) as session:
            records = session.execute(
                select(PredictionRecord).where(
                    PredictionRecord.symbol == symbol.upper(), PredictionRecord.target_date == target_date
                )
            ).scalars().all()
            if not records:
                raise PredictionNotFoundError(symbol, target_date)
            for record in records:
                record.actual_return = actual_return
                record.actual_volatility = actual_volatility
            return len(records)

    def get_predictions_for_backtesting(self, start: date, end: date) -> List[PredictionResult]:
        """Predictions with back-filled actuals whose target date falls in [start, end]"""
        with session_scope(self._session_factory) as session:
            records = session.execute(
                select(PredictionRecord)
                .where(
                    PredictionRecord.target_date.between(start, end),
                    PredictionRecord.actual_return.is_not(None),
                )
                .order_by(PredictionRecord.target_date, PredictionRecord.symbol)
            ).scalars().all()
            return [_prediction_from_record(r) for r in records]

    def cleanup_old_predictions(self, cutoff: date) -> int:
        with session_scope(self._session_factory) as session:
            removed = session.execute(
                delete(PredictionRecord).where(PredictionRecord.prediction_date < cutoff)
            ).rowcount
        logger.info(f"Removed {removed} predictions older than {cutoff}")
        return removed

    # ------------------------------------------------------------- audit log

    def save_api_request_log(
        self,
        provider: str,
        request_type: str,
        symbol: Optional[str] = None,
        response_code: int = RESERVATION_RESPONSE_CODE,
        error_message: Optional[str] = None,
        request_count: int = 1,
        request_time: Optional[datetime] = None,
    ) -> int:
        """Append one audit row and return its id"""
        if request_count < 1:
            raise ValueError(f"request_count must be >= 1, got {request_count}")
        record = ApiRequestLogRecord(
            provider=provider,
            request_type=request_type,
            symbol=symbol,
            request_time=request_time or utc_now(),
            response_code=response_code,
            error_message=error_message,
            request_count=request_count,
        )
        with session_scope(self._session_factory) as session:
            session.add(record)
            session.flush()
            return record.id

    def count_api_requests(self, provider: str, since: datetime) -> int:
        """
        Requests sent to `provider` at or after `since`.

        Only reservation rows (response code 0) are counted, weighted by
        `request_count`, so the outcome row of the same attempt is not
        counted twice.
        """
        with session_scope(self._session_factory) as session:
            total = session.execute(
                select(func.coalesce(func.sum(ApiRequestLogRecord.request_count), 0)).where(
                    ApiRequestLogRecord.provider == provider,
                    ApiRequestLogRecord.request_time >= since,
                    ApiRequestLogRecord.response_code == RESERVATION_RESPONSE_CODE,
                )
            ).scalar_one()
            return int(total)

    def get_api_request_times(self, provider: str, since: datetime) -> List[datetime]:
        """Reservation timestamps for `provider` since `since`, oldest first"""
        with session_scope(self._session_factory) as session:
            return list(
                session.execute(
                    select(ApiRequestLogRecord.request_time)
                    .where(
                        ApiRequestLogRecord.provider == provider,
                        ApiRequestLogRecord.request_time >= since,
                        ApiRequestLogRecord.response_code == RESERVATION_RESPONSE_CODE,
                    )
                    .order_by(ApiRequestLogRecord.request_time)
                ).scalars().all()
            )

    def get_api_request_log(self, provider: Optional[str] = None) -> List[Dict[str, Any]]:
        """Audit rows as dictionaries, oldest first"""
        query = select(ApiRequestLogRecord).order_by(ApiRequestLogRecord.id)
        if provider is not None:
            query = query.where(ApiRequestLogRecord.provider == provider)
        with session_scope(self._session_factory) as session:
            return [
                {
                    "provider": r.provider,
                    "request_type": r.request_type,
                    "symbol": r.symbol,
                    "request_time": r.request_time,
                    "response_code": r.response_code,
                    "error_message": r.error_message,
                    "request_count": r.request_count,
                }
                for r in session.execute(query).scalars().all()
            ]


def save_in_batches(store: MarketDataStore, bar_batches: Iterable[List[Bar]]) -> int:
    """Persist streamed bar batches one at a time; returns the number stored"""
    total = 0
    for bars in bar_batches:
        total += store.save_bars(bars)["stored_count"]
    return total
