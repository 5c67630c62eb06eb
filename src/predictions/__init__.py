"""Prediction aggregation — store, weights, weighted median, stats cache, status.

The engine facade lives in ``predictions.service``; it is not re-exported here
because it pulls in the admission layer, which itself imports these errors.
"""

from .cache import AggregatedStats, StatsCache
from .errors import (
    ConfigurationError,
    ConflictError,
    EngineError,
    NotFoundError,
    RateLimitError,
    TransientStoreError,
    ValidationError,
    VerificationError,
)
from .median import WeightedDate, compute_median, simple_median
from .status import StatusResult, classify
from .store import Prediction, PredictionStore
from .weights import calculate_weight

__all__ = [
    "AggregatedStats",
    "StatsCache",
    "ConfigurationError",
    "ConflictError",
    "EngineError",
    "NotFoundError",
    "RateLimitError",
    "TransientStoreError",
    "ValidationError",
    "VerificationError",
    "WeightedDate",
    "compute_median",
    "simple_median",
    "StatusResult",
    "classify",
    "Prediction",
    "PredictionStore",
    "calculate_weight",
]
