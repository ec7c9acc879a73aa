import sys
import time
from pathlib import Path

import pytest

# Load shared fixtures from tests._fixtures so pytest discovers them
pytest_plugins = [
    "tests._fixtures.conftest",
    "tests._fixtures.frozen_time",
]

# Make the repository root importable so `import src...` works without an install
root = Path(__file__).resolve().parent.parent
if str(root) not in sys.path:
    sys.path.insert(0, str(root))


@pytest.fixture(autouse=True)
def no_sleep(mocker):
    """Prevent actual sleeping in tests to speed up delay and backoff paths."""
    mocker.patch.object(time, "sleep", lambda s: None)


@pytest.fixture(autouse=True)
def block_market_data_api(mocker):
    """Autouse fixture: no test performs a real HTTP call to the provider"""
    from tests._fixtures.remote_api_responses import canned_api_factory

    mocker.patch("requests.Session.get", return_value=canned_api_factory("empty"))
    yield
