"""
Retention Pruner: deletes aggregated metrics past their retention.

A row is deleted only when its whole window ended before the cutoff
(window_end < cutoff); windows straddling the cutoff are kept.
"""

from datetime import datetime, timedelta
from typing import Optional

import structlog

from dashcore.models.system import PruneResult
from dashcore.storage.base import MetricStore
from dashcore.utils.clock import to_naive_utc, utcnow


class RetentionPruner:
    """
    Args:
        metric_store: Store holding aggregated metrics
        retention: How long aggregated rows are kept (default 365 days)
    """

    def __init__(self, metric_store: MetricStore, retention: timedelta = timedelta(days=365)):
        if retention <= timedelta(0):
            raise ValueError("retention must be positive")
        self.metric_store = metric_store
        self.retention = retention
        self.logger = structlog.get_logger()

    def prune(self, cutoff: datetime) -> int:
        """
        Delete every aggregated metric with window_end before `cutoff`.

        Returns:
            Number of rows deleted

        Raises:
            DataSourceUnavailable: If the store fails
        """
        cutoff = to_naive_utc(cutoff)
        self.logger.info("retention_prune_started", cutoff=cutoff.isoformat())
        try:
            deleted = self.metric_store.delete_where(end_before=cutoff)
        except Exception as e:
            self.logger.error("retention_prune_failed", cutoff=cutoff.isoformat(), error=str(e))
            raise

        self.logger.info("retention_prune_finished", cutoff=cutoff.isoformat(), deleted=deleted)
        return deleted

    def cutoff_for(self, now: Optional[datetime] = None) -> datetime:
        return to_naive_utc(now or utcnow()) - self.retention

    def prune_expired(self, now: Optional[datetime] = None) -> PruneResult:
        """Prune with cutoff = now - retention."""
        started = utcnow()
        cutoff = self.cutoff_for(now)
        deleted = self.prune(cutoff)
        return PruneResult(cutoff=cutoff, deleted=deleted, started_at=started, completed_at=utcnow())
