"""
Pydantic v2 data models for dashcore.

Model Organization:
    - enums: Enumeration types (event types, granularities, statuses)
    - events: Raw business events
    - metrics: Aggregated metrics and raw domain metrics
    - kpis: KPI thresholds, KPIs and trend data
    - system: Aggregation run manifests and prune results
"""

from .enums import (
    EventType,
    KPIStatus,
    MetricDataType,
    MetricType,
    RunStatus,
    TimeGranularity,
    TrendDirection,
)
from .events import RawEvent
from .kpis import DomainKPI, KPIThresholds, ThresholdRegistry, TrendData
from .metrics import (
    OVERALL_DIMENSION,
    AggregatedMetric,
    DomainMetric,
    metric_id_for,
    service_dimension,
)
from .system import AggregationRun, PruneResult

__all__ = [
    "EventType",
    "KPIStatus",
    "MetricDataType",
    "MetricType",
    "RunStatus",
    "TimeGranularity",
    "TrendDirection",
    "RawEvent",
    "DomainKPI",
    "KPIThresholds",
    "ThresholdRegistry",
    "TrendData",
    "OVERALL_DIMENSION",
    "AggregatedMetric",
    "DomainMetric",
    "metric_id_for",
    "service_dimension",
    "AggregationRun",
    "PruneResult",
]
