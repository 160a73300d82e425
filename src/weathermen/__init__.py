"""Weather provider aggregation engine for Prometheus-style exporters."""

__version__ = "0.6.0"
