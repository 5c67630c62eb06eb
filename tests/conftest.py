"""Shared test fixtures for the consensus engine."""

import sys
from datetime import date
from pathlib import Path

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from admission.identity import IdentityResolver  # noqa: E402
from cli.config_models import EngineConfig  # noqa: E402
from observability import metrics  # noqa: E402
from predictions.store import PredictionStore  # noqa: E402

REFERENCE_DATE = date(2026, 11, 19)


class ManualClock:
    """Monotonic clock stand-in that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def reset_metrics():
    metrics.reset()
    yield
    metrics.reset()


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "predictions.db"


@pytest.fixture
def store(db_path):
    return PredictionStore(db_path, retry_min_wait=0.01, retry_max_wait=0.05)


@pytest.fixture
def resolver():
    return IdentityResolver({"v1": "test-salt-v1", "v2": "test-salt-v2"}, "v1")


@pytest.fixture
def engine_config():
    """Engine defaults, but status classification from the first prediction."""
    return EngineConfig(minimum_sample=1, distribution_min_count=3)


@pytest.fixture
def make_service(store, resolver, engine_config):
    """Factory for PredictionService over the per-test store."""
    from predictions.service import PredictionService

    def _make(**kwargs):
        kwargs.setdefault("resolver", resolver)
        kwargs.setdefault("engine", engine_config)
        return PredictionService(store, **kwargs)

    return _make
