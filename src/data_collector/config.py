"""
Configuration settings for market data acquisition, feature engineering and prediction
"""

import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes"}


@dataclass
class MarketDataConfig:
    """Configuration for the external market data provider and storage"""

    # API Configuration
    API_KEY: Optional[str] = None
    BASE_URL: str = "https://www.alphavantage.co/query"
    PROVIDER: str = "AlphaVantage"

    # Rate Limiting (free tier: 25 requests/day-ish budget spread per hour, 5/minute)
    REQUESTS_PER_MINUTE: int = 5
    REQUESTS_PER_HOUR: int = 25
    REQUEST_DELAY_SECONDS: float = 12.0
    DISABLE_RATE_LIMITING: bool = False
    MAX_RETRIES: int = 3
    REQUEST_TIMEOUT: int = 30

    # Batch fetching
    BATCH_SIZE: int = 5
    BATCH_DELAY_SECONDS: float = 60.0

    # CSV ingestion
    CSV_BATCH_SIZE: int = 10_000

    # Database Configuration
    DATABASE_URL: Optional[str] = None
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "market_data"
    DB_USER: str = "postgres"
    DB_PASSWORD: str = ""

    @property
    def database_url(self) -> str:
        """Explicit DATABASE_URL, else a PostgreSQL (psycopg3) URL from the DB_* parts"""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+psycopg://{self.DB_USER}:{self.DB_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        )

    @classmethod
    def from_env(cls) -> "MarketDataConfig":
        """Create configuration from environment variables"""
        return cls(
            API_KEY=os.getenv("ALPHA_VANTAGE_API_KEY"),
            BASE_URL=os.getenv("MARKET_DATA_BASE_URL", cls.BASE_URL),
            PROVIDER=os.getenv("MARKET_DATA_PROVIDER", cls.PROVIDER),
            REQUESTS_PER_MINUTE=int(os.getenv("REQUESTS_PER_MINUTE", str(cls.REQUESTS_PER_MINUTE))),
            REQUESTS_PER_HOUR=int(os.getenv("REQUESTS_PER_HOUR", str(cls.REQUESTS_PER_HOUR))),
            REQUEST_DELAY_SECONDS=float(os.getenv("REQUEST_DELAY_SECONDS", str(cls.REQUEST_DELAY_SECONDS))),
            DISABLE_RATE_LIMITING=_env_flag("DISABLE_RATE_LIMITING"),
            MAX_RETRIES=int(os.getenv("MAX_RETRIES", str(cls.MAX_RETRIES))),
            REQUEST_TIMEOUT=int(os.getenv("REQUEST_TIMEOUT", str(cls.REQUEST_TIMEOUT))),
            BATCH_SIZE=int(os.getenv("BATCH_SIZE", str(cls.BATCH_SIZE))),
            BATCH_DELAY_SECONDS=float(os.getenv("BATCH_DELAY_SECONDS", str(cls.BATCH_DELAY_SECONDS))),
            CSV_BATCH_SIZE=int(os.getenv("CSV_BATCH_SIZE", str(cls.CSV_BATCH_SIZE))),
            DATABASE_URL=os.getenv("DATABASE_URL"),
            DB_HOST=os.getenv("DB_HOST", cls.DB_HOST),
            DB_PORT=int(os.getenv("DB_PORT", str(cls.DB_PORT))),
            DB_NAME=os.getenv("DB_NAME", cls.DB_NAME),
            DB_USER=os.getenv("DB_USER", cls.DB_USER),
            DB_PASSWORD=os.getenv("DB_PASSWORD", cls.DB_PASSWORD),
        )


@dataclass
class FeatureEngineeringConfig:
    """Window lengths of the technical features"""

    RETURN_LAGS: List[int] = field(default_factory=lambda: [1, 5, 20])
    SMA_PERIODS: List[int] = field(default_factory=lambda: [5, 10, 20, 50])
    RSI_PERIOD: int = 14
    MACD_PARAMS: Dict[str, int] = field(default_factory=lambda: {"fast": 12, "slow": 26, "signal": 9})
    BOLLINGER_PARAMS: Dict[str, int] = field(default_factory=lambda: {"period": 20, "std": 2})
    VOLATILITY_PERIOD: int = 20
    VOLUME_PERIODS: Dict[str, int] = field(default_factory=lambda: {"long": 20, "short": 10})

    # First index with a full 50-bar lookback
    WARMUP_BARS: int = 50
    MIN_BARS_FOR_FEATURES: int = 51


@dataclass
class PredictionConfig:
    """Model training and prediction settings"""

    MODEL_DIR: str = "models"
    MODEL_FILENAME: str = "stock_prediction_model.joblib"
    MODEL_VERSION: str = "v1.0"
    TEST_FRACTION: float = 0.2
    MIN_EVALUATION_ROWS: int = 5
    RETRAIN_AFTER_DAYS: int = 7
    MIN_BARS_FOR_PREDICTION: int = 11
    N_ESTIMATORS: int = 100
    MAX_DEPTH: Optional[int] = 10
    RANDOM_STATE: int = 42
    MIN_PREDICTED_PRICE: float = 0.01
    VOLATILITY_EPSILON: float = 1e-6

    @property
    def model_path(self) -> str:
        return os.path.join(self.MODEL_DIR, self.MODEL_FILENAME)

    @classmethod
    def from_env(cls) -> "PredictionConfig":
        max_depth = os.getenv("MODEL_MAX_DEPTH")
        return cls(
            MODEL_DIR=os.getenv("MODEL_DIR", cls.MODEL_DIR),
            MODEL_VERSION=os.getenv("MODEL_VERSION", cls.MODEL_VERSION),
            TEST_FRACTION=float(os.getenv("MODEL_TEST_FRACTION", str(cls.TEST_FRACTION))),
            RETRAIN_AFTER_DAYS=int(os.getenv("RETRAIN_AFTER_DAYS", str(cls.RETRAIN_AFTER_DAYS))),
            N_ESTIMATORS=int(os.getenv("MODEL_N_ESTIMATORS", str(cls.N_ESTIMATORS))),
            MAX_DEPTH=int(max_depth) if max_depth else cls.MAX_DEPTH,
        )


# Global configuration instances
config = MarketDataConfig.from_env()
feature_config = FeatureEngineeringConfig()
prediction_config = PredictionConfig.from_env()
