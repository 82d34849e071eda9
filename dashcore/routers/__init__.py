"""API routers for all endpoints."""

from dashcore.routers import aggregation, kpis, metrics, system

__all__ = [
    "aggregation",
    "kpis",
    "metrics",
    "system",
]
