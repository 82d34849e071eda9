"""
Data normalization for domain metrics and KPIs.

Collected items are validated, converted to their category's standard
unit and enriched with timestamps and fiscal attributes before KPI
evaluation. Invalid items are skipped with a warning. Status and trend
are left to the KPI evaluator.
"""

from datetime import date, datetime, timedelta
from typing import Any, Optional, TypeVar

import structlog
from pydantic import BaseModel, ConfigDict, Field

from dashcore.exceptions import InvalidMetric
from dashcore.models.enums import MetricDataType
from dashcore.models.kpis import DomainKPI
from dashcore.models.metrics import DomainMetric
from dashcore.utils.clock import utcnow

Item = TypeVar("Item", DomainMetric, DomainKPI)


class NormalizationConfig(BaseModel):
    """
    Unit tables used by the normalizer.

    Attributes:
        standard_units: Category to standard unit
        converters: "<SOURCE>_TO_<TARGET>" to multiplicative factor
    """

    model_config = ConfigDict(frozen=True)

    standard_units: dict[str, str] = Field(
        default_factory=lambda: {
            "Sales": "CURRENCY",
            "Revenue": "CURRENCY",
            "Time": "SECONDS",
            "Efficiency": "PERCENTAGE",
            "Performance": "SCORE",
            "Count": "COUNT",
        }
    )
    converters: dict[str, float] = Field(
        default_factory=lambda: {
            "MINUTES_TO_SECONDS": 60.0,
            "HOURS_TO_SECONDS": 3600.0,
            "DAYS_TO_SECONDS": 86400.0,
        }
    )

    def standard_unit(self, category: Optional[str]) -> Optional[str]:
        if category is None:
            return None
        return self.standard_units.get(category)

    def factor(self, source_unit: str, target_unit: str) -> Optional[float]:
        return self.converters.get(f"{source_unit}_TO_{target_unit}")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def matches_data_type(value: Any, data_type: MetricDataType) -> bool:
    """Check a value against its declared data type."""
    if value is None:
        return False
    if data_type == MetricDataType.INTEGER:
        return isinstance(value, int) and not isinstance(value, bool)
    if data_type == MetricDataType.DOUBLE:
        return _is_number(value)
    if data_type == MetricDataType.STRING:
        return isinstance(value, str)
    if data_type == MetricDataType.BOOLEAN:
        return isinstance(value, bool)
    if data_type == MetricDataType.TIMESTAMP:
        return isinstance(value, (datetime, date))
    if data_type == MetricDataType.DURATION:
        return isinstance(value, timedelta)
    if data_type == MetricDataType.JSON:
        return isinstance(value, (dict, str))
    if data_type == MetricDataType.ARRAY:
        return isinstance(value, (list, tuple))
    return False


class DataNormalizer:
    """
    Validates, standardizes and enriches domain metrics and KPIs.

    Args:
        config: Unit tables (defaults to the built-in tables)
    """

    def __init__(self, config: Optional[NormalizationConfig] = None):
        self.config = config or NormalizationConfig()
        self.logger = structlog.get_logger()

    # =========================================================================
    # Validation
    # =========================================================================

    def _validate(self, item_id: Optional[str], item: Item, kind: str) -> None:
        for field in ("domain", "name"):
            text = getattr(item, field)
            if text is None or not str(text).strip():
                raise InvalidMetric(f"{kind} missing required field: {field}", item_id=item_id)
        if item.value is None:
            raise InvalidMetric(f"{kind} missing required field: value", item_id=item_id)
        if item.data_type is not None and not matches_data_type(item.value, item.data_type):
            raise InvalidMetric(
                f"{kind} value does not match data type {item.data_type.value}",
                item_id=item_id,
            )

    def validate_metric(self, metric: DomainMetric) -> None:
        """
        Raises:
            InvalidMetric: If id, domain, name or value is missing, or the
                value does not match the declared data type
        """
        if metric.metric_id is None or not metric.metric_id.strip():
            raise InvalidMetric("Metric missing required field: metric_id")
        self._validate(metric.metric_id, metric, "Metric")

    def validate_kpi(self, kpi: DomainKPI) -> None:
        """
        Raises:
            InvalidMetric: If id, domain, name or value is missing, or the
                value does not match the declared data type
        """
        if kpi.kpi_id is None or not kpi.kpi_id.strip():
            raise InvalidMetric("KPI missing required field: kpi_id")
        self._validate(kpi.kpi_id, kpi, "KPI")

    # =========================================================================
    # Units
    # =========================================================================

    def transform_value(self, value: Any, source_unit: Optional[str], target_unit: str) -> Any:
        """
        Convert a value between units.

        Non-numeric values, matching units and unknown conversions return
        the value unchanged; unknown conversions are logged.
        """
        if value is None or source_unit == target_unit:
            return value
        factor = self.config.factor(str(source_unit), target_unit)
        if factor is None:
            self.logger.warning(
                "unit_converter_missing", source_unit=source_unit, target_unit=target_unit
            )
            return value
        if not _is_number(value):
            return value
        return float(value) * factor

    def _standardize(self, item: Item, with_target: bool = False) -> dict[str, Any]:
        standard = self.config.standard_unit(item.category)
        if standard is None or standard == item.unit:
            return {}
        update: dict[str, Any] = {
            "value": self.transform_value(item.value, item.unit, standard),
            "unit": standard,
        }
        if with_target:
            update["target_value"] = self.transform_value(item.target_value, item.unit, standard)
        return update

    # =========================================================================
    # Enrichment
    # =========================================================================

    def _enrichment(self, item: Item) -> dict[str, Any]:
        collected = item.collection_timestamp or utcnow()
        sourced = item.source_timestamp or collected
        update: dict[str, Any] = {
            "collection_timestamp": collected,
            "source_timestamp": sourced,
        }
        if item.category == "Sales":
            attributes = dict(item.attributes)
            attributes["quarter"] = f"Q{(sourced.month - 1) // 3 + 1}"
            attributes["fiscal_year"] = str(sourced.year)
            update["attributes"] = attributes
        return update

    def enrich_metric(self, metric: DomainMetric) -> DomainMetric:
        return metric.model_copy(update=self._enrichment(metric))

    def enrich_kpi(self, kpi: DomainKPI) -> DomainKPI:
        return kpi.model_copy(update=self._enrichment(kpi))

    # =========================================================================
    # Batch
    # =========================================================================

    def normalize_metric(self, metric: DomainMetric) -> DomainMetric:
        """Validate, standardize and enrich one metric (raises InvalidMetric)."""
        self.validate_metric(metric)
        standardized = metric.model_copy(update=self._standardize(metric))
        return self.enrich_metric(standardized)

    def normalize_kpi(self, kpi: DomainKPI) -> DomainKPI:
        """Validate, standardize (value and target) and enrich one KPI (raises InvalidMetric)."""
        self.validate_kpi(kpi)
        standardized = kpi.model_copy(update=self._standardize(kpi, with_target=True))
        return self.enrich_kpi(standardized)

    def normalize_metrics(self, metrics: list[DomainMetric]) -> list[DomainMetric]:
        """Normalize a batch, skipping invalid metrics with a warning."""
        normalized = []
        for metric in metrics:
            try:
                normalized.append(self.normalize_metric(metric))
            except InvalidMetric as e:
                self.logger.warning("invalid_metric_skipped", metric_id=e.item_id, reason=str(e))

        self.logger.debug("metrics_normalized", received=len(metrics), kept=len(normalized))
        return normalized

    def normalize_kpis(self, kpis: list[DomainKPI]) -> list[DomainKPI]:
        """Normalize a batch, skipping invalid KPIs with a warning."""
        normalized = []
        for kpi in kpis:
            try:
                normalized.append(self.normalize_kpi(kpi))
            except InvalidMetric as e:
                self.logger.warning("invalid_kpi_skipped", kpi_id=e.item_id, reason=str(e))

        self.logger.debug("kpis_normalized", received=len(kpis), kept=len(normalized))
        return normalized
