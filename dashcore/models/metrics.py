"""
Metric models.

AggregatedMetric is the output of the aggregation engine: one value per
(name, dimension, granularity, window). DomainMetric is a raw measurement
reported by a domain collector before normalization.
"""

from datetime import datetime
from typing import Any, Optional
from uuid import NAMESPACE_URL, uuid5

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from dashcore.utils.clock import to_naive_utc, utcnow

from .enums import MetricDataType, MetricType, TimeGranularity, TrendDirection

OVERALL_DIMENSION = "overall"
SERVICE_DIMENSION_PREFIX = "service:"


def service_dimension(service: str) -> str:
    """Dimension key for a per-service breakdown."""
    return f"{SERVICE_DIMENSION_PREFIX}{service}"


def metric_id_for(
    name: str,
    dimension: str,
    granularity: TimeGranularity,
    window_start: datetime,
    window_end: datetime,
) -> str:
    """
    Deterministic metric id for an upsert key.

    Re-aggregating the same window always yields the same id.
    """
    key = "|".join(
        [
            name,
            dimension,
            TimeGranularity(granularity).value,
            window_start.isoformat(),
            window_end.isoformat(),
        ]
    )
    return str(uuid5(NAMESPACE_URL, f"dashcore:metric:{key}"))


class AggregatedMetric(BaseModel):
    """
    One aggregated value over a half-open time window.

    Immutable once written. For a given (name, dimension, granularity) the
    windows form a non-overlapping partition of the aggregated range.

    Attributes:
        metric_id: Deterministic id derived from the upsert key
        metric_type: Aggregation kind (count, unique_count, rate, ...)
        name: Metric name (e.g. "product_views")
        dimension: "overall" or "service:<name>"
        value: Aggregated value
        window_start: Inclusive window start (UTC)
        window_end: Exclusive window end (UTC)
        granularity: Bucket granularity
        created_at: When this row was computed
        attributes: Provenance (e.g. numerator/denominator for rates)
    """

    model_config = ConfigDict(frozen=True)

    metric_id: str = Field(description="Deterministic id derived from the upsert key")
    metric_type: MetricType = Field(description="Aggregation kind")
    name: str = Field(min_length=1, description="Metric name")
    dimension: str = Field(default=OVERALL_DIMENSION, description="Grouping key")
    value: float = Field(description="Aggregated value")
    window_start: datetime = Field(description="Inclusive window start (UTC)")
    window_end: datetime = Field(description="Exclusive window end (UTC)")
    granularity: TimeGranularity = Field(description="Bucket granularity")
    created_at: datetime = Field(default_factory=utcnow, description="When this row was computed")
    attributes: dict[str, Any] = Field(default_factory=dict, description="Provenance")

    @field_validator("window_start", "window_end", "created_at")
    @classmethod
    def normalize_instant(cls, v: datetime) -> datetime:
        """Store all instants as naive UTC."""
        return to_naive_utc(v)

    @model_validator(mode="after")
    def check_window(self) -> "AggregatedMetric":
        """Windows may be degenerate but never inverted."""
        if self.window_end < self.window_start:
            raise ValueError("window_end must not precede window_start")
        return self

    @classmethod
    def create(
        cls,
        *,
        name: str,
        metric_type: MetricType,
        value: float,
        window_start: datetime,
        window_end: datetime,
        granularity: TimeGranularity,
        dimension: str = OVERALL_DIMENSION,
        attributes: Optional[dict[str, Any]] = None,
    ) -> "AggregatedMetric":
        """Build a metric whose id is derived from its upsert key."""
        window_start = to_naive_utc(window_start)
        window_end = to_naive_utc(window_end)
        return cls(
            metric_id=metric_id_for(name, dimension, granularity, window_start, window_end),
            metric_type=metric_type,
            name=name,
            dimension=dimension,
            value=value,
            window_start=window_start,
            window_end=window_end,
            granularity=granularity,
            attributes=attributes or {},
        )

    @property
    def upsert_key(self) -> tuple[str, str, str, datetime, datetime]:
        """Key under which the metric store replaces earlier rows."""
        return (
            self.name,
            self.dimension,
            self.granularity.value,
            self.window_start,
            self.window_end,
        )


class DomainMetric(BaseModel):
    """
    A raw business measurement reported by a domain collector.

    Normalized (units) and enriched (timestamps, fiscal attributes) before
    it feeds KPI evaluation.
    """

    model_config = ConfigDict(frozen=True)

    metric_id: Optional[str] = Field(default=None, description="Collector-assigned id")
    domain: Optional[str] = Field(default=None, description="Owning domain (e.g. courier)")
    name: Optional[str] = Field(default=None, description="Metric name")
    description: Optional[str] = Field(default=None, description="Human-readable description")
    category: Optional[str] = Field(default=None, description="Category (Sales, Time, Count, ...)")
    value: Any = Field(default=None, description="Measured value")
    data_type: Optional[MetricDataType] = Field(default=None, description="Declared value type")
    unit: Optional[str] = Field(default=None, description="Unit of the value")
    collection_timestamp: Optional[datetime] = Field(
        default=None, description="When the collector read the value"
    )
    source_timestamp: Optional[datetime] = Field(
        default=None, description="When the domain produced the value"
    )
    attributes: dict[str, Any] = Field(default_factory=dict, description="Extra attributes")
    trend: Optional[TrendDirection] = Field(default=None, description="Reported trend")
    change_percentage: Optional[float] = Field(
        default=None, description="Change versus the previous period, in percent"
    )
