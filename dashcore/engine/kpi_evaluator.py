"""
KPI Evaluator: status tiers and trend classification.

Status comes from a KPI's value and its direction-aware thresholds. Trend
comes from the period-over-period change percentage or, when a history
series is available, from a least-squares slope (scipy.stats.linregress).
Trend is never derived from status.

Evaluation never raises: a missing or non-numeric value, or missing
thresholds, yields UNKNOWN.
"""

import math
from typing import Any, Optional, Sequence
from uuid import uuid4

import numpy as np
import structlog
from scipy import stats

from dashcore.models.enums import KPIStatus, TrendDirection
from dashcore.models.kpis import DomainKPI, KPIThresholds, ThresholdRegistry, TrendData
from dashcore.utils.clock import utcnow


def _numeric(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return None if math.isnan(number) else number


def evaluate_status(value: Any, thresholds: Optional[KPIThresholds]) -> KPIStatus:
    """
    Classify a value into a status tier.

    Higher-is-better: EXCELLENT if value >= excellent, GOOD if >= good,
    WARNING if >= warning, else CRITICAL. Lower-is-better uses <=.
    """
    number = _numeric(value)
    if number is None or thresholds is None:
        return KPIStatus.UNKNOWN

    if thresholds.higher_is_better:
        if number >= thresholds.excellent:
            return KPIStatus.EXCELLENT
        if number >= thresholds.good:
            return KPIStatus.GOOD
        if number >= thresholds.warning:
            return KPIStatus.WARNING
        return KPIStatus.CRITICAL

    if number <= thresholds.excellent:
        return KPIStatus.EXCELLENT
    if number <= thresholds.good:
        return KPIStatus.GOOD
    if number <= thresholds.warning:
        return KPIStatus.WARNING
    return KPIStatus.CRITICAL


def evaluate_trend(change_percentage: Optional[float]) -> TrendDirection:
    """> 0 is increasing, < 0 decreasing, 0 or absent stable."""
    number = _numeric(change_percentage)
    if number is None or number == 0:
        return TrendDirection.STABLE
    return TrendDirection.INCREASING if number > 0 else TrendDirection.DECREASING


def compute_change_percentage(current: Any, previous: Any) -> Optional[float]:
    """
    Percent change from previous to current.

    Both zero is 0.0; a zero previous value otherwise has no defined change.
    """
    cur = _numeric(current)
    prev = _numeric(previous)
    if cur is None or prev is None:
        return None
    if prev == 0:
        return 0.0 if cur == 0 else None
    return (cur - prev) / abs(prev) * 100.0


def evaluate_slope_trend(
    values: Sequence[float],
    slope_threshold: float = 0.1,
    volatility_cv: float = 0.5,
    volatility_r2: float = 0.3,
    time_period: Optional[str] = None,
) -> TrendData:
    """
    Fit a line through a series (oldest first) and classify its direction.

    |slope| <= slope_threshold is STABLE. A series whose fit is poor
    (r-squared below volatility_r2) and whose coefficient of variation
    exceeds volatility_cv is VOLATILE.
    """
    series = [v for v in (_numeric(x) for x in values) if v is not None]
    latest = series[-1] if series else None

    if len(series) < 2:
        return TrendData(
            value=latest,
            direction=TrendDirection.STABLE,
            data_point_count=len(series),
            time_period=time_period,
            historical_values=series,
        )

    arr = np.asarray(series, dtype=float)
    if np.all(arr == arr[0]):
        slope, r_squared = 0.0, 0.0
    else:
        result = stats.linregress(np.arange(len(arr), dtype=float), arr)
        slope = float(result.slope)
        r_squared = float(result.rvalue**2)

    mean = float(np.mean(arr))
    cv = float(np.std(arr) / abs(mean)) if mean != 0 else 0.0

    if r_squared < volatility_r2 and cv > volatility_cv:
        direction = TrendDirection.VOLATILE
    elif slope > slope_threshold:
        direction = TrendDirection.INCREASING
    elif slope < -slope_threshold:
        direction = TrendDirection.DECREASING
    else:
        direction = TrendDirection.STABLE

    return TrendData(
        value=latest,
        slope=slope,
        correlation=r_squared,
        direction=direction,
        data_point_count=len(series),
        time_period=time_period,
        historical_values=series,
    )


class KPIEvaluator:
    """
    Produces evaluated KPI snapshots.

    Args:
        registry: Thresholds by KPI name, used when a KPI carries none
        preserve_upstream_status: Keep a non-UNKNOWN status supplied by the
            producer instead of recomputing it
        slope_threshold: |slope| at or below this is STABLE
        min_points: Minimum history length for the slope-based trend
        volatility_cv: Coefficient of variation above which a poor fit is VOLATILE
        volatility_r2: r-squared below which a series may be VOLATILE
    """

    def __init__(
        self,
        registry: Optional[ThresholdRegistry] = None,
        preserve_upstream_status: bool = False,
        slope_threshold: float = 0.1,
        min_points: int = 3,
        volatility_cv: float = 0.5,
        volatility_r2: float = 0.3,
    ):
        self.registry = registry or ThresholdRegistry()
        self.preserve_upstream_status = preserve_upstream_status
        self.slope_threshold = slope_threshold
        self.min_points = min_points
        self.volatility_cv = volatility_cv
        self.volatility_r2 = volatility_r2
        self.logger = structlog.get_logger()

    def thresholds_for(self, kpi: DomainKPI) -> Optional[KPIThresholds]:
        return kpi.thresholds or self.registry.get(kpi.name)

    def evaluate(
        self, kpi: DomainKPI, history: Optional[Sequence[float]] = None
    ) -> DomainKPI:
        """
        Return a new snapshot of `kpi` with status and trend recomputed.

        Args:
            kpi: KPI to evaluate (not modified)
            history: Prior values, oldest first; the current value is appended
                when the series is long enough for a slope-based trend

        Returns:
            New DomainKPI snapshot
        """
        thresholds = self.thresholds_for(kpi)

        if self.preserve_upstream_status and kpi.status != KPIStatus.UNKNOWN:
            status = kpi.status
        else:
            status = evaluate_status(kpi.value, thresholds)

        trend_data = None
        series = list(history or [])
        current = _numeric(kpi.value)
        if current is not None:
            series.append(current)
        if history is not None and len(series) >= self.min_points:
            trend_data = evaluate_slope_trend(
                series,
                slope_threshold=self.slope_threshold,
                volatility_cv=self.volatility_cv,
                volatility_r2=self.volatility_r2,
                time_period=kpi.time_period,
            )
            trend = trend_data.direction
        else:
            trend = evaluate_trend(kpi.change_percentage)

        evaluated = kpi.model_copy(
            update={
                "kpi_id": str(uuid4()),
                "thresholds": thresholds,
                "status": status,
                "trend": trend,
                "trend_data": trend_data,
                "evaluated_at": utcnow(),
            }
        )
        if thresholds is None:
            self.logger.debug("kpi_thresholds_missing", kpi_name=kpi.name)

        self.logger.debug(
            "kpi_evaluated",
            kpi_name=kpi.name,
            value=current,
            status=status.value,
            trend=trend.value,
        )
        return evaluated

    def evaluate_all(
        self,
        kpis: Sequence[DomainKPI],
        histories: Optional[dict[str, Sequence[float]]] = None,
    ) -> list[DomainKPI]:
        """Evaluate a batch; histories are looked up by KPI name."""
        histories = histories or {}
        return [self.evaluate(kpi, histories.get(kpi.name or "")) for kpi in kpis]
