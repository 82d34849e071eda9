"""
Pytest configuration and shared fixtures for the dashcore test suite.

Provides model factories, an in-memory storage backend, environment
isolation and a FastAPI test client across unit, integration, golden and
property-based tests.
"""

import os
import tempfile
import uuid as _uuid
from datetime import datetime, timedelta
from typing import Optional
from uuid import uuid4

import pytest

# Set testing environment BEFORE importing app. Use a temp path that does not
# exist yet (DuckDB creates the file); :memory: is per-connection.
_test_db_path = os.path.join(tempfile.gettempdir(), f"dashcore_test_{_uuid.uuid4().hex[:8]}.duckdb")
os.environ["TESTING"] = "true"
os.environ["DB_PATH"] = _test_db_path
os.environ.setdefault("SCHEDULER_ENABLED", "false")


# ---------------------------------------------------------------------------
# Model factories
# ---------------------------------------------------------------------------

from dashcore.exceptions import DataSourceUnavailable
from dashcore.models.enums import EventType, MetricDataType, MetricType, TimeGranularity
from dashcore.models.events import RawEvent
from dashcore.models.kpis import DomainKPI, KPIThresholds
from dashcore.models.metrics import AggregatedMetric, DomainMetric
from dashcore.storage.base import StorageBackend

T0 = datetime(2024, 3, 15, 10, 0, 0)


def make_raw_event(
    event_type: EventType = EventType.PRODUCT_VIEW,
    timestamp: Optional[datetime] = None,
    source_service: str = "catalog",
    user_id: Optional[str] = "user_1",
    session_id: Optional[str] = "session_1",
    **overrides,
) -> RawEvent:
    """Factory function for creating test RawEvent objects."""
    defaults = dict(
        event_id=str(uuid4()),
        event_type=event_type,
        source_service=source_service,
        user_id=user_id,
        session_id=session_id,
        timestamp=timestamp or T0 + timedelta(minutes=5),
        attributes={},
    )
    defaults.update(overrides)
    return RawEvent(**defaults)


def make_events(
    count: int,
    event_type: EventType = EventType.PRODUCT_VIEW,
    start: datetime = T0,
    spacing: timedelta = timedelta(seconds=20),
    **overrides,
) -> list[RawEvent]:
    """`count` events of one type spaced evenly from `start`."""
    return [
        make_raw_event(event_type=event_type, timestamp=start + spacing * i, **overrides)
        for i in range(count)
    ]


def make_metric(
    name: str = "product_views",
    value: float = 10.0,
    window_start: datetime = T0,
    window_end: Optional[datetime] = None,
    granularity: TimeGranularity = TimeGranularity.HOUR,
    dimension: str = "overall",
    metric_type: MetricType = MetricType.COUNT,
) -> AggregatedMetric:
    """Factory function for creating test AggregatedMetric objects."""
    return AggregatedMetric.create(
        name=name,
        metric_type=metric_type,
        value=value,
        window_start=window_start,
        window_end=window_end or window_start + timedelta(hours=1),
        granularity=granularity,
        dimension=dimension,
    )


def make_thresholds(
    excellent: float = 90.0,
    good: float = 70.0,
    warning: float = 50.0,
    critical: float = 30.0,
    higher_is_better: bool = True,
) -> KPIThresholds:
    """Factory function for creating test KPIThresholds objects."""
    return KPIThresholds(
        excellent=excellent,
        good=good,
        warning=warning,
        critical=critical,
        higher_is_better=higher_is_better,
    )


def make_domain_kpi(
    name: str = "delivery_success_rate",
    value=85.0,
    domain: str = "courier",
    thresholds: Optional[KPIThresholds] = None,
    **overrides,
) -> DomainKPI:
    """Factory function for creating test DomainKPI objects."""
    defaults = dict(
        kpi_id=str(uuid4()),
        domain=domain,
        name=name,
        category="Efficiency",
        value=value,
        data_type=MetricDataType.DOUBLE,
        unit="PERCENTAGE",
        thresholds=thresholds,
    )
    defaults.update(overrides)
    return DomainKPI(**defaults)


def make_domain_metric(
    name: str = "avg_delivery_time",
    value=30,
    domain: str = "courier",
    **overrides,
) -> DomainMetric:
    """Factory function for creating test DomainMetric objects."""
    defaults = dict(
        metric_id=str(uuid4()),
        domain=domain,
        name=name,
        category="Time",
        value=value,
        data_type=MetricDataType.INTEGER,
        unit="MINUTES",
    )
    defaults.update(overrides)
    return DomainMetric(**defaults)


# ---------------------------------------------------------------------------
# In-memory storage
# ---------------------------------------------------------------------------


class MockStorage(StorageBackend):
    """
    In-memory StorageBackend for unit tests.

    Set `fail_reads` or `fail_writes` to simulate an unavailable store.
    """

    def __init__(self):
        self.events: list[RawEvent] = []
        self.metrics: dict[tuple, AggregatedMetric] = {}
        self.snapshots: list[DomainKPI] = []
        self.fail_reads = False
        self.fail_writes = False
        self.upsert_batches: list[int] = []

    def _check_read(self):
        if self.fail_reads:
            raise DataSourceUnavailable("event store offline")

    def _check_write(self):
        if self.fail_writes:
            raise DataSourceUnavailable("metric store offline")

    def _matching(self, event_type, start, end):
        self._check_read()
        return [
            e
            for e in self.events
            if start <= e.timestamp < end and (event_type is None or e.event_type == event_type)
        ]

    # --- Event store ---
    def count(self, event_type, start, end):
        return len(self._matching(event_type, start, end))

    def count_by_service(self, event_type, start, end):
        counts: dict[str, int] = {}
        for e in self._matching(event_type, start, end):
            counts[e.source_service] = counts.get(e.source_service, 0) + 1
        return counts

    def count_distinct_users(self, event_type, start, end):
        return len({e.user_id for e in self._matching(event_type, start, end) if e.user_id})

    def count_distinct_sessions(self, event_type, start, end):
        return len({e.session_id for e in self._matching(event_type, start, end) if e.session_id})

    def count_distinct_by_service(self, event_type, start, end, key="user_id"):
        seen: dict[str, set] = {}
        for e in self._matching(event_type, start, end):
            ids = seen.setdefault(e.source_service, set())
            value = getattr(e, key)
            if value is not None:
                ids.add(value)
        return {service: len(ids) for service, ids in seen.items()}

    def find(self, event_type, start, end, source_service=None, user_id=None, limit=10000):
        results = [
            e
            for e in self._matching(event_type, start, end)
            if (source_service is None or e.source_service == source_service)
            and (user_id is None or e.user_id == user_id)
        ]
        return sorted(results, key=lambda e: e.timestamp)[:limit]

    def write_events(self, events):
        known = {e.event_id for e in self.events}
        fresh = [e for e in events if e.event_id not in known]
        self.events.extend(fresh)
        return len(fresh)

    # --- Metric store ---
    def upsert(self, metric):
        self.upsert_many([metric])

    def upsert_many(self, metrics):
        self._check_write()
        for metric in metrics:
            self.metrics[metric.upsert_key] = metric
        self.upsert_batches.append(len(metrics))
        return len(metrics)

    def query(self, name, start=None, end=None, dimension=None, granularity=None):
        self._check_read()
        results = [
            m
            for m in self.metrics.values()
            if m.name == name
            and (start is None or m.window_start >= start)
            and (end is None or m.window_start < end)
            and (dimension is None or m.dimension == dimension)
            and (granularity is None or m.granularity == granularity)
        ]
        return sorted(results, key=lambda m: (m.window_start, m.dimension))

    def delete_where(self, end_before):
        self._check_write()
        doomed = [k for k, m in self.metrics.items() if m.window_end < end_before]
        for key in doomed:
            del self.metrics[key]
        return len(doomed)

    # --- KPI snapshots ---
    def write_kpi_snapshot(self, kpi):
        self.snapshots.append(kpi)
        return kpi.kpi_id

    def read_kpi_history(self, name, start=None, end=None, limit=1000):
        return [k for k in self.snapshots if k.name == name][:limit]

    def read_latest_kpis(self):
        latest: dict[str, DomainKPI] = {}
        for kpi in self.snapshots:
            latest[kpi.name] = kpi
        return [latest[name] for name in sorted(latest)]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_storage():
    """Fresh MockStorage instance for each test."""
    return MockStorage()


@pytest.fixture
def duckdb_storage(tmp_path):
    """DuckDBStorage on a fresh file per test."""
    from dashcore.storage.duckdb_storage import DuckDBStorage

    return DuckDBStorage(db_path=str(tmp_path / "dashcore.duckdb"))


@pytest.fixture
def thresholds():
    """90/70/50 higher-is-better thresholds."""
    return make_thresholds()


@pytest.fixture
def client():
    """FastAPI test client for integration tests."""
    from fastapi.testclient import TestClient

    from dashcore.main import app

    with TestClient(app) as c:
        yield c


@pytest.fixture
def real_storage():
    """The app's DuckDB storage, emptied before each test."""
    from dashcore.storage import get_storage

    storage = get_storage()
    storage.clear_for_testing()
    return storage


def pytest_sessionfinish(session, exitstatus):
    """Remove the temporary DuckDB file."""
    for suffix in ("", ".wal"):
        path = _test_db_path + suffix
        if os.path.exists(path):
            try:
                os.remove(path)
            except OSError:
                pass
