"""Resilience wrapper and aggregation engine."""

from .aggregate import Aggregator, FetchResult, build_wrappers, results_frame
from .resilience import CircuitBreaker, MeasurementCache, ResilientProvider

__all__ = [
    "Aggregator",
    "FetchResult",
    "build_wrappers",
    "results_frame",
    "CircuitBreaker",
    "MeasurementCache",
    "ResilientProvider",
]
