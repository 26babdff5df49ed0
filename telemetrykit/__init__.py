"""Metrics aggregation, StatsD encoding, tracing contexts and release-health sessions."""

__version__ = "0.1.0"
__all__ = [
    "aggregator",
    "metrics",
    "normalization",
    "session",
    "spans",
    "tracecontext",
    "transport",
    "units",
]