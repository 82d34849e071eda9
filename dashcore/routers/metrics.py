"""
Aggregated metrics read router.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends

from dashcore.dependencies import get_aggregator
from dashcore.engine.aggregator import Aggregator
from dashcore.models.enums import TimeGranularity
from dashcore.storage import StorageBackend, get_storage
from dashcore.utils.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()


@router.get("/")
def query_metrics(
    name: str,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    dimension: Optional[str] = None,
    granularity: Optional[TimeGranularity] = None,
    storage: StorageBackend = Depends(get_storage),
):
    """Stored rows of one metric, oldest window first."""
    metrics = storage.query(
        name, start=start, end=end, dimension=dimension, granularity=granularity
    )
    logger.info("metrics_queried", name=name, count=len(metrics))
    return {
        "success": True,
        "data": [m.model_dump(mode="json") for m in metrics],
        "count": len(metrics),
    }


@router.get("/timeseries")
def metric_timeseries(
    name: str,
    start: datetime,
    end: datetime,
    granularity: TimeGranularity = TimeGranularity.DAY,
    dimension: Optional[str] = None,
    aggregator: Aggregator = Depends(get_aggregator),
):
    """One metric's values grouped by dimension."""
    series = aggregator.time_series(name, start, end, granularity, dimension=dimension)
    return {
        "success": True,
        "data": {
            dim: [{"window_start": ts.isoformat(), "value": value} for ts, value in points]
            for dim, points in series.items()
        },
    }
