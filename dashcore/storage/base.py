"""
Abstract storage interfaces for dashcore.

Three contracts, one per concern:
- EventStore: read-mostly queries over raw events (plus the ingestion-side write)
- MetricStore: persistence for aggregated metrics keyed by
  (name, dimension, granularity, window_start, window_end)
- KPISnapshotStore: append-only history of evaluated KPI snapshots

Event time filters are half-open: start <= timestamp < end. Distinct
counts ignore missing identifiers. Implementations raise
DataSourceUnavailable when the backing store fails.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Literal, Optional

from dashcore.models.enums import EventType, TimeGranularity
from dashcore.models.events import RawEvent
from dashcore.models.kpis import DomainKPI
from dashcore.models.metrics import AggregatedMetric

DistinctKey = Literal["user_id", "session_id"]


class EventStore(ABC):
    """
    Query interface over raw events.

    Every query takes an optional event type (None matches any type) and a
    half-open [start, end) time range.
    """

    # =========================================================================
    # Counts
    # =========================================================================

    @abstractmethod
    def count(self, event_type: Optional[EventType], start: datetime, end: datetime) -> int:
        """
        Count events of a type in [start, end).

        Raises:
            DataSourceUnavailable: If the query fails
        """
        pass

    @abstractmethod
    def count_by_service(
        self, event_type: Optional[EventType], start: datetime, end: datetime
    ) -> dict[str, int]:
        """
        Count events of a type in [start, end), grouped by source service.

        Services with no matching events are absent from the result.

        Raises:
            DataSourceUnavailable: If the query fails
        """
        pass

    @abstractmethod
    def count_distinct_users(
        self, event_type: Optional[EventType], start: datetime, end: datetime
    ) -> int:
        """Count distinct non-null user ids among matching events."""
        pass

    @abstractmethod
    def count_distinct_sessions(
        self, event_type: Optional[EventType], start: datetime, end: datetime
    ) -> int:
        """Count distinct non-null session ids among matching events."""
        pass

    @abstractmethod
    def count_distinct_by_service(
        self,
        event_type: Optional[EventType],
        start: datetime,
        end: datetime,
        key: DistinctKey = "user_id",
    ) -> dict[str, int]:
        """
        Count distinct non-null values of `key`, grouped by source service.

        Services whose matching events all lack `key` report 0.
        """
        pass

    # =========================================================================
    # Event reads and writes
    # =========================================================================

    @abstractmethod
    def find(
        self,
        event_type: Optional[EventType],
        start: datetime,
        end: datetime,
        source_service: Optional[str] = None,
        user_id: Optional[str] = None,
        limit: int = 10000,
    ) -> list[RawEvent]:
        """
        Return matching events ordered by timestamp.

        Raises:
            DataSourceUnavailable: If the query fails
        """
        pass

    @abstractmethod
    def write_events(self, events: list[RawEvent]) -> int:
        """
        Append raw events. Duplicate event ids are skipped.

        Returns:
            Number of events written
        """
        pass


class MetricStore(ABC):
    """Persistence for aggregated metrics."""

    @abstractmethod
    def upsert(self, metric: AggregatedMetric) -> None:
        """
        Insert or replace the metric with the same upsert key.

        Raises:
            DataSourceUnavailable: If the write fails
        """
        pass

    @abstractmethod
    def upsert_many(self, metrics: list[AggregatedMetric]) -> int:
        """
        Upsert a batch atomically: either every row lands or none does.

        Returns:
            Number of rows written

        Raises:
            DataSourceUnavailable: If the write fails (nothing is committed)
        """
        pass

    @abstractmethod
    def query(
        self,
        name: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        dimension: Optional[str] = None,
        granularity: Optional[TimeGranularity] = None,
    ) -> list[AggregatedMetric]:
        """
        Return metrics whose window starts in [start, end), ordered by
        window_start then dimension.
        """
        pass

    @abstractmethod
    def delete_where(self, end_before: datetime) -> int:
        """
        Delete every metric with window_end strictly before `end_before`.

        Returns:
            Number of rows deleted

        Raises:
            DataSourceUnavailable: If the delete fails
        """
        pass


class KPISnapshotStore(ABC):
    """Append-only store of evaluated KPI snapshots."""

    @abstractmethod
    def write_kpi_snapshot(self, kpi: DomainKPI) -> str:
        """Persist one snapshot and return its id."""
        pass

    @abstractmethod
    def read_kpi_history(
        self,
        name: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 1000,
    ) -> list[DomainKPI]:
        """Snapshots for a KPI name, oldest first."""
        pass

    @abstractmethod
    def read_latest_kpis(self) -> list[DomainKPI]:
        """The most recent snapshot of every KPI name."""
        pass


class StorageBackend(EventStore, MetricStore, KPISnapshotStore):
    """A single backend implementing every storage contract."""

    pass
