"""
SQLAlchemy models for bars, feature vectors, predictions and the API audit log
"""

from sqlalchemy import (
    Column,
    Integer,
    BigInteger,
    String,
    Date,
    Float,
    Boolean,
    DateTime,
    Text,
    CheckConstraint,
    Index,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

SYMBOL_LENGTH_CONSTRAINT = "LENGTH(symbol) >= 1"

Base = declarative_base()


class BarRecord(Base):
    """Raw daily OHLCV bar"""

    __tablename__ = "bars"

    id = Column(Integer, primary_key=True, autoincrement=True)
    symbol = Column(String(20), nullable=False)
    date = Column(Date, nullable=False)
    open = Column(Float, nullable=False)
    high = Column(Float, nullable=False)
    low = Column(Float, nullable=False)
    close = Column(Float, nullable=False)
    adjusted_close = Column(Float)
    volume = Column(BigInteger, nullable=False)
    created_at = Column(DateTime, default=func.current_timestamp())

    __table_args__ = (
        UniqueConstraint("symbol", "date", name="uq_bars_symbol_date"),
        CheckConstraint("close > 0", name="check_bars_close_positive"),
        CheckConstraint("volume >= 0", name="check_bars_volume_non_negative"),
        CheckConstraint(SYMBOL_LENGTH_CONSTRAINT, name="check_bars_symbol_length"),
    )

    def __repr__(self):
        return f"<BarRecord(symbol='{self.symbol}', date='{self.date}', close={self.close})>"


class FeatureVectorRecord(Base):
    """Engineered features for one (symbol, date), with optional next-day labels"""

    __tablename__ = "feature_vectors"

    id = Column(Integer, primary_key=True, autoincrement=True)
    symbol = Column(String(20), nullable=False)
    date = Column(Date, nullable=False)

    open = Column(Float)
    high = Column(Float)
    low = Column(Float)
    close = Column(Float)
    volume = Column(BigInteger)

    return_1d = Column(Float)
    return_5d = Column(Float)
    return_20d = Column(Float)
    sma_ratio_5 = Column(Float)
    sma_ratio_10 = Column(Float)
    sma_ratio_20 = Column(Float)
    sma_ratio_50 = Column(Float)
    rsi_14 = Column(Float)
    macd = Column(Float)
    macd_signal = Column(Float)
    bollinger_position = Column(Float)
    volume_ratio_20 = Column(Float)
    volume_ma_ratio = Column(Float)
    volatility_20 = Column(Float)
    high_low_ratio = Column(Float)

    next_day_return = Column(Float)
    next_day_volatility = Column(Float)
    sharpe_ratio = Column(Float)
    is_high_return_low_risk = Column(Boolean)

    created_at = Column(DateTime, default=func.current_timestamp())

    __table_args__ = (
        UniqueConstraint("symbol", "date", name="uq_feature_vectors_symbol_date"),
        CheckConstraint("rsi_14 >= 0 AND rsi_14 <= 100", name="check_feature_vectors_rsi_range"),
    )

    def __repr__(self):
        return f"<FeatureVectorRecord(symbol='{self.symbol}', date='{self.date}')>"


class PredictionRecord(Base):
    """Model output for a symbol's next trading day"""

    __tablename__ = "predictions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    symbol = Column(String(20), nullable=False)
    prediction_date = Column(Date, nullable=False)
    target_date = Column(Date, nullable=False)
    current_price = Column(Float)
    predicted_price = Column(Float)
    predicted_return = Column(Float, nullable=False)
    predicted_volatility = Column(Float, nullable=False)
    confidence_score = Column(Float, nullable=False)
    risk_adjusted_score = Column(Float, nullable=False)
    model_version = Column(String(50), nullable=False)
    actual_return = Column(Float)
    actual_volatility = Column(Float)
    created_at = Column(DateTime, default=func.current_timestamp())

    __table_args__ = (
        UniqueConstraint("symbol", "target_date", "model_version", name="uq_predictions_symbol_target_version"),
        CheckConstraint(
            "confidence_score >= 0 AND confidence_score <= 1", name="check_predictions_confidence_range"
        ),
        Index("ix_predictions_prediction_date", "prediction_date"),
    )

    def __repr__(self):
        return (
            f"<PredictionRecord(symbol='{self.symbol}', target_date='{self.target_date}', "
            f"predicted_return={self.predicted_return})>"
        )


class ApiRequestLogRecord(Base):
    """Append-only audit row per outbound provider request; drives rate limiting"""

    __tablename__ = "api_request_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    provider = Column(String(50), nullable=False)
    request_type = Column(String(50), nullable=False)
    symbol = Column(String(20))
    request_time = Column(DateTime, nullable=False)
    response_code = Column(Integer, nullable=False, default=0)
    error_message = Column(Text)
    request_count = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        CheckConstraint("request_count >= 1", name="check_api_request_log_count_positive"),
        Index("ix_api_request_log_provider_time", "provider", "request_time"),
    )

    def __repr__(self):
        return (
            f"<ApiRequestLogRecord(provider='{self.provider}', symbol='{self.symbol}', "
            f"request_time='{self.request_time}', response_code={self.response_code})>"
        )


def create_tables(engine) -> None:
    """Create all tables that do not exist yet"""
    Base.metadata.create_all(engine)
