import random

import numpy as np
import pytest

from src.data_collector.config import PredictionConfig
from src.database.connection import build_engine
from src.database.market_data_store import MarketDataStore
from src.models.prediction_engine import ArtifactStore, PredictionEngine


# Central deterministic seed fixture for all tests (Polyfactory + numeric libs)
@pytest.fixture(scope="session", autouse=True)
def factory_seed():
    seed = 42
    random.seed(seed)
    np.random.seed(seed)
    return seed


@pytest.fixture
def store():
    """MarketDataStore on a fresh in-memory SQLite database"""
    engine = build_engine("sqlite://")
    yield MarketDataStore(engine=engine)
    engine.dispose()


@pytest.fixture
def prediction_config(tmp_path):
    return PredictionConfig(MODEL_DIR=str(tmp_path / "models"), N_ESTIMATORS=20)


@pytest.fixture
def prediction_engine(prediction_config):
    return PredictionEngine(
        artifact_store=ArtifactStore(prediction_config.model_path),
        config=prediction_config,
    )
