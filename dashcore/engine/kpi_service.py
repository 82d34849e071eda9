"""
KPI Service: the on-demand evaluation path.

Builds KPIs from aggregated metric windows (or accepts KPIs collected from
domains), normalizes them, evaluates status and trend, and records each
evaluation as a new snapshot.
"""

from datetime import datetime
from typing import Optional

import structlog

from dashcore.models.enums import MetricDataType, TimeGranularity
from dashcore.models.kpis import DomainKPI
from dashcore.models.metrics import OVERALL_DIMENSION
from dashcore.storage.base import KPISnapshotStore, MetricStore
from dashcore.utils.clock import utcnow

from .bucketer import floor_to_granularity, shift
from .kpi_evaluator import KPIEvaluator, compute_change_percentage
from .normalization import DataNormalizer


class KPIService:
    """
    Args:
        metric_store: Source of aggregated metric windows
        snapshot_store: Destination (and history source) for KPI snapshots
        evaluator: Status and trend evaluator
        normalizer: Validation, unit standardization and enrichment
        history_windows: Prior windows used for slope-based trends
    """

    def __init__(
        self,
        metric_store: MetricStore,
        snapshot_store: KPISnapshotStore,
        evaluator: KPIEvaluator,
        normalizer: Optional[DataNormalizer] = None,
        history_windows: int = 6,
    ):
        self.metric_store = metric_store
        self.snapshot_store = snapshot_store
        self.evaluator = evaluator
        self.normalizer = normalizer or DataNormalizer()
        self.history_windows = history_windows
        self.logger = structlog.get_logger()

    def evaluate_metric_kpi(
        self,
        name: str,
        granularity: TimeGranularity,
        as_of: Optional[datetime] = None,
        dimension: str = OVERALL_DIMENSION,
        domain: str = "platform",
        category: Optional[str] = None,
        unit: Optional[str] = None,
    ) -> DomainKPI:
        """
        Evaluate an aggregated metric as a KPI.

        The most recent complete window before `as_of` supplies the value,
        the window before it the change percentage, and up to
        `history_windows` earlier windows the slope-based trend.

        Raises:
            ValueError: For CUSTOM granularity
            DataSourceUnavailable: If a store fails
        """
        as_of = as_of or utcnow()
        end = floor_to_granularity(as_of, granularity)
        start = shift(end, granularity, -(self.history_windows + 1))
        windows = [
            m
            for m in self.metric_store.query(
                name, start=start, end=end, dimension=dimension, granularity=granularity
            )
            if m.window_end <= end
        ]

        kpi = DomainKPI(
            domain=domain,
            name=name,
            category=category,
            unit=unit,
            data_type=MetricDataType.DOUBLE,
            time_period=TimeGranularity(granularity).value,
            attributes={"dimension": dimension},
        )

        if not windows:
            self.logger.info("kpi_source_metric_missing", kpi_name=name, dimension=dimension)
            evaluated = self.evaluator.evaluate(kpi)
            self.snapshot_store.write_kpi_snapshot(evaluated)
            return evaluated

        current = windows[-1]
        previous = windows[-2] if len(windows) > 1 else None
        kpi = kpi.model_copy(
            update={
                "value": current.value,
                "change_percentage": compute_change_percentage(
                    current.value, previous.value if previous else None
                ),
                "related_metric_ids": [current.metric_id],
                "source_timestamp": current.window_end,
            }
        )

        normalized = self.normalizer.normalize_kpi(kpi)
        history = [m.value for m in windows[:-1]]
        evaluated = self.evaluator.evaluate(normalized, history=history)
        self.snapshot_store.write_kpi_snapshot(evaluated)

        self.logger.info(
            "metric_kpi_evaluated",
            kpi_name=name,
            value=evaluated.value,
            status=evaluated.status.value,
            trend=evaluated.trend.value if evaluated.trend else None,
        )
        return evaluated

    def evaluate_domain_kpis(self, kpis: list[DomainKPI]) -> list[DomainKPI]:
        """
        Normalize, evaluate and persist externally collected KPIs.

        Invalid KPIs are skipped. Each KPI's stored snapshot history feeds
        its slope-based trend.
        """
        evaluated = []
        for kpi in self.normalizer.normalize_kpis(kpis):
            snapshots = self.snapshot_store.read_kpi_history(kpi.name)
            history = [s.value for s in snapshots[-self.history_windows:]]
            result = self.evaluator.evaluate(kpi, history=history or None)
            self.snapshot_store.write_kpi_snapshot(result)
            evaluated.append(result)

        self.logger.info("domain_kpis_evaluated", received=len(kpis), evaluated=len(evaluated))
        return evaluated

    def kpis_needing_attention(self) -> list[DomainKPI]:
        """Latest snapshot of every KPI whose status is WARNING or CRITICAL."""
        return [kpi for kpi in self.snapshot_store.read_latest_kpis() if kpi.needs_attention]
