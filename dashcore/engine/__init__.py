"""
Aggregation and KPI engine.

- bucketer: calendar-aligned window generation
- families / aggregator: metric definitions and windowed rollups
- kpi_evaluator / normalization / kpi_service: KPI status and trend
- pruner: retention
- scheduler: cadence-driven execution
"""

from .aggregator import Aggregator, safe_rate
from .bucketer import TimeWindow, floor_to_granularity, generate_windows, previous_period, shift
from .families import DEFAULT_FAMILIES, AverageMetric, CountMetric, RateMetric, UniqueCountMetric
from .kpi_evaluator import (
    KPIEvaluator,
    compute_change_percentage,
    evaluate_slope_trend,
    evaluate_status,
    evaluate_trend,
)
from .kpi_service import KPIService
from .normalization import DataNormalizer, NormalizationConfig
from .pruner import RetentionPruner
from .scheduler import Cadence, ScheduledJob, Scheduler, build_default_jobs

__all__ = [
    "Aggregator",
    "safe_rate",
    "TimeWindow",
    "floor_to_granularity",
    "generate_windows",
    "previous_period",
    "shift",
    "DEFAULT_FAMILIES",
    "AverageMetric",
    "CountMetric",
    "RateMetric",
    "UniqueCountMetric",
    "KPIEvaluator",
    "compute_change_percentage",
    "evaluate_slope_trend",
    "evaluate_status",
    "evaluate_trend",
    "KPIService",
    "DataNormalizer",
    "NormalizationConfig",
    "RetentionPruner",
    "Cadence",
    "ScheduledJob",
    "Scheduler",
    "build_default_jobs",
]
