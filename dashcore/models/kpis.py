"""
KPI models.

Thresholds are fully specified at construction: configuration is either
rejected when incomplete (strict) or completed with legacy defaults
(lenient). Evaluation never applies hidden defaults.
"""

import math
from datetime import datetime
from types import MappingProxyType
from typing import Any, Iterator, Mapping, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from dashcore.exceptions import ThresholdMisconfiguration
from dashcore.utils.clock import utcnow

from .enums import KPIStatus, MetricDataType, TrendDirection

CUT_POINTS = ("excellent", "good", "warning", "critical")


def _as_number(value: Any) -> Optional[float]:
    """Return value as a finite-or-infinite float, or None if it is not numeric."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return None if math.isnan(value) else float(value)
    if isinstance(value, str):
        try:
            parsed = float(value)
        except ValueError:
            return None
        return None if math.isnan(parsed) else parsed
    return None


class KPIThresholds(BaseModel):
    """
    Direction-aware status cut points for one KPI.

    With higher_is_better the KPI is EXCELLENT at or above `excellent`,
    GOOD at or above `good`, WARNING at or above `warning`, else CRITICAL.
    Lower-is-better mirrors this with <=. `critical` marks the nominal
    failing level and is informational.
    """

    # Lenient defaults are infinite; keep them through JSON snapshots.
    model_config = ConfigDict(frozen=True, ser_json_inf_nan="constants")

    excellent: float = Field(description="Cut point for EXCELLENT")
    good: float = Field(description="Cut point for GOOD")
    warning: float = Field(description="Cut point for WARNING")
    critical: float = Field(description="Nominal CRITICAL level")
    higher_is_better: bool = Field(default=True, description="Threshold direction")

    @classmethod
    def legacy_defaults(cls, higher_is_better: bool = True) -> dict[str, float]:
        """
        Defaults applied to missing cut points in lenient mode.

        Excellent/good fall back to the unreachable extreme and warning to
        the opposite extreme, so a KPI without thresholds is always at
        least WARNING.
        """
        if higher_is_better:
            return {
                "excellent": math.inf,
                "good": math.inf,
                "warning": -math.inf,
                "critical": -math.inf,
            }
        return {
            "excellent": -math.inf,
            "good": -math.inf,
            "warning": math.inf,
            "critical": math.inf,
        }

    @classmethod
    def from_config(
        cls,
        config: Mapping[str, Any],
        strict: bool = True,
        kpi_name: Optional[str] = None,
    ) -> "KPIThresholds":
        """
        Build thresholds from a configuration mapping.

        Args:
            config: Mapping with excellent/good/warning/critical and
                optional higher_is_better (defaults to True)
            strict: Reject missing, non-numeric or misordered cut points
            kpi_name: Name used in error messages

        Raises:
            ThresholdMisconfiguration: In strict mode, if the config is incomplete
        """
        higher_is_better = config.get("higher_is_better", True)
        if not isinstance(higher_is_better, bool):
            if strict:
                raise ThresholdMisconfiguration(
                    f"higher_is_better must be a boolean for KPI '{kpi_name}'",
                    kpi_name=kpi_name,
                )
            higher_is_better = True

        values: dict[str, float] = {}
        missing = []
        for point in CUT_POINTS:
            number = _as_number(config.get(point))
            if number is None:
                missing.append(point)
            else:
                values[point] = number

        if missing:
            if strict:
                raise ThresholdMisconfiguration(
                    f"KPI '{kpi_name}' thresholds missing or non-numeric: {', '.join(missing)}",
                    kpi_name=kpi_name,
                )
            defaults = cls.legacy_defaults(higher_is_better)
            for point in missing:
                values[point] = defaults[point]
        elif strict:
            ordered = [values[p] for p in CUT_POINTS]
            expected = sorted(ordered, reverse=higher_is_better)
            if ordered != expected:
                raise ThresholdMisconfiguration(
                    f"KPI '{kpi_name}' thresholds are not ordered for "
                    f"{'higher' if higher_is_better else 'lower'}-is-better",
                    kpi_name=kpi_name,
                )

        return cls(higher_is_better=higher_is_better, **values)


class ThresholdRegistry:
    """
    Immutable per-KPI-name threshold lookup, loaded once at startup.
    """

    def __init__(self, thresholds: Optional[Mapping[str, KPIThresholds]] = None):
        self._thresholds = MappingProxyType(dict(thresholds or {}))

    @classmethod
    def from_config(
        cls, config: Mapping[str, Mapping[str, Any]], strict: bool = True
    ) -> "ThresholdRegistry":
        """
        Build a registry from {kpi_name: threshold mapping}.

        Raises:
            ThresholdMisconfiguration: In strict mode, on the first incomplete entry
        """
        return cls(
            {
                name: KPIThresholds.from_config(entry, strict=strict, kpi_name=name)
                for name, entry in config.items()
            }
        )

    def get(self, kpi_name: Optional[str]) -> Optional[KPIThresholds]:
        if kpi_name is None:
            return None
        return self._thresholds.get(kpi_name)

    def __contains__(self, kpi_name: object) -> bool:
        return kpi_name in self._thresholds

    def __iter__(self) -> Iterator[str]:
        return iter(self._thresholds)

    def __len__(self) -> int:
        return len(self._thresholds)


class TrendData(BaseModel):
    """
    Slope-based trend over a historical series.

    Attributes:
        value: Latest value in the series
        slope: Least-squares slope per period (None if not computable)
        correlation: r-squared of the linear fit
        direction: Classified direction
        data_point_count: Number of points used
        time_period: Label of the period the series covers
        calculated_at: When the trend was computed
        historical_values: The series, oldest first
    """

    model_config = ConfigDict(frozen=True)

    value: Optional[float] = Field(default=None, description="Latest value")
    slope: Optional[float] = Field(default=None, description="Slope per period")
    correlation: Optional[float] = Field(default=None, description="r-squared of the fit")
    direction: TrendDirection = Field(default=TrendDirection.STABLE, description="Direction")
    data_point_count: int = Field(default=0, ge=0, description="Points used")
    time_period: Optional[str] = Field(default=None, description="Period label")
    calculated_at: datetime = Field(default_factory=utcnow, description="When computed")
    historical_values: list[float] = Field(default_factory=list, description="Series, oldest first")


class DomainKPI(BaseModel):
    """
    A business KPI with its evaluated status and trend.

    Status and trend are derived by the evaluator; each evaluation produces
    a new snapshot so that history is preserved.
    """

    model_config = ConfigDict(frozen=True, ser_json_inf_nan="constants")

    kpi_id: Optional[str] = Field(
        default_factory=lambda: str(uuid4()), description="KPI snapshot id"
    )
    domain: Optional[str] = Field(default=None, description="Owning domain")
    name: Optional[str] = Field(default=None, description="KPI name")
    description: Optional[str] = Field(default=None, description="Human-readable description")
    category: Optional[str] = Field(default=None, description="Category (Sales, Time, ...)")
    value: Any = Field(default=None, description="Current value")
    data_type: Optional[MetricDataType] = Field(default=None, description="Declared value type")
    unit: Optional[str] = Field(default=None, description="Unit of the value")
    target_value: Optional[float] = Field(default=None, description="Target, if any")
    thresholds: Optional[KPIThresholds] = Field(default=None, description="Status cut points")
    status: KPIStatus = Field(default=KPIStatus.UNKNOWN, description="Evaluated status")
    trend: Optional[TrendDirection] = Field(default=None, description="Evaluated trend")
    change_percentage: Optional[float] = Field(
        default=None, description="Change versus the previous period, in percent"
    )
    trend_data: Optional[TrendData] = Field(default=None, description="Slope-based trend detail")
    related_metric_ids: list[str] = Field(default_factory=list, description="Source metric ids")
    time_period: Optional[str] = Field(default=None, description="Period label")
    collection_timestamp: Optional[datetime] = Field(default=None, description="Collected at")
    source_timestamp: Optional[datetime] = Field(default=None, description="Produced at")
    evaluated_at: Optional[datetime] = Field(default=None, description="Evaluated at")
    attributes: dict[str, Any] = Field(default_factory=dict, description="Extra attributes")

    @field_validator("change_percentage")
    @classmethod
    def reject_nan(cls, v: Optional[float]) -> Optional[float]:
        """NaN carries no direction; treat it as absent."""
        if v is not None and math.isnan(v):
            return None
        return v

    @property
    def needs_attention(self) -> bool:
        return self.status in (KPIStatus.WARNING, KPIStatus.CRITICAL)
