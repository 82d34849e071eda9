"""
DuckDB storage implementation for dashcore.

Provides a local columnar backend for raw events, aggregated metrics and
KPI snapshots.

Key features:
- Thread-safe per-thread connections
- Idempotent schema creation
- JSON columns for free-form attributes
- Upserts keyed by (name, dimension, granularity, window_start, window_end),
  written as delete-then-insert inside one transaction per batch
"""

import json
import os
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import duckdb
import structlog

from dashcore.exceptions import DataSourceUnavailable
from dashcore.models.enums import EventType, TimeGranularity
from dashcore.models.events import RawEvent
from dashcore.models.kpis import DomainKPI
from dashcore.models.metrics import AggregatedMetric
from dashcore.utils.clock import utcnow

from .base import DistinctKey, StorageBackend

logger = structlog.get_logger(__name__)

_DISTINCT_COLUMNS = {"user_id", "session_id"}

_TABLES = ("raw_events", "aggregated_metrics", "kpi_snapshots")


class DuckDBStorage(StorageBackend):
    """
    DuckDB implementation of the storage backend.

    Attributes:
        db_path: Path to the DuckDB database file
        _local: Thread-local storage for per-thread connections
        _lock: Thread lock for schema operations
        _initialized: Flag tracking whether schema is initialized
    """

    def __init__(self, db_path: str = "./data/dashcore.duckdb"):
        """
        Initialize DuckDB storage backend.

        Args:
            db_path: Path to DuckDB database file
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._local = threading.local()
        self._lock = threading.Lock()
        self._initialized = False

        logger.info("duckdb_storage_initialized", db_path=str(self.db_path))

        self._initialize_schema()

    @contextmanager
    def _get_connection(self):
        """
        Get a thread-local DuckDB connection.

        Yields:
            DuckDB connection instance

        Raises:
            DataSourceUnavailable: If connection cannot be established
        """
        if not hasattr(self._local, "connection"):
            try:
                self._local.connection = duckdb.connect(str(self.db_path))
                logger.debug("duckdb_connection_created", thread_id=threading.get_ident())
            except Exception as e:
                logger.error("duckdb_connection_failed", error=str(e))
                raise DataSourceUnavailable(f"Failed to connect to DuckDB: {e}") from e

        yield self._local.connection

    @contextmanager
    def _transaction(self):
        """Run the enclosed statements in one transaction; roll back on error."""
        with self._get_connection() as conn:
            conn.begin()
            try:
                yield conn
            except Exception:
                conn.rollback()
                raise
            conn.commit()

    def _initialize_schema(self):
        """
        Initialize all database tables and indexes.

        Idempotent and safe to call multiple times.

        Raises:
            DataSourceUnavailable: If schema creation fails
        """
        if self._initialized:
            return

        with self._lock:
            if self._initialized:
                return

            try:
                with self._get_connection() as conn:
                    # =========================================================
                    # Raw events
                    # =========================================================

                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS raw_events (
                            event_id VARCHAR PRIMARY KEY,
                            event_type VARCHAR NOT NULL,
                            source_service VARCHAR NOT NULL,
                            user_id VARCHAR,
                            session_id VARCHAR,
                            event_time TIMESTAMP NOT NULL,
                            attributes JSON,
                            ingested_at TIMESTAMP NOT NULL DEFAULT CURRENT_TIMESTAMP
                        )
                    """)

                    conn.execute("""
                        CREATE INDEX IF NOT EXISTS idx_raw_events_type_time
                        ON raw_events(event_type, event_time)
                    """)

                    conn.execute("""
                        CREATE INDEX IF NOT EXISTS idx_raw_events_service
                        ON raw_events(source_service)
                    """)

                    # =========================================================
                    # Aggregated metrics
                    # =========================================================

                    # No primary key: upserts are delete-then-insert by key in
                    # one transaction, which DuckDB rejects on unique indexes.
                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS aggregated_metrics (
                            metric_id VARCHAR NOT NULL,
                            metric_type VARCHAR NOT NULL,
                            name VARCHAR NOT NULL,
                            dimension VARCHAR NOT NULL,
                            value DOUBLE NOT NULL,
                            window_start TIMESTAMP NOT NULL,
                            window_end TIMESTAMP NOT NULL,
                            granularity VARCHAR NOT NULL,
                            created_at TIMESTAMP NOT NULL,
                            attributes JSON
                        )
                    """)

                    conn.execute("""
                        CREATE INDEX IF NOT EXISTS idx_aggregated_metrics_name_start
                        ON aggregated_metrics(name, window_start)
                    """)

                    conn.execute("""
                        CREATE INDEX IF NOT EXISTS idx_aggregated_metrics_end
                        ON aggregated_metrics(window_end)
                    """)

                    # =========================================================
                    # KPI snapshots
                    # =========================================================

                    conn.execute("CREATE SEQUENCE IF NOT EXISTS kpi_snapshot_seq")

                    conn.execute("""
                        CREATE TABLE IF NOT EXISTS kpi_snapshots (
                            snapshot_id VARCHAR PRIMARY KEY,
                            seq BIGINT NOT NULL DEFAULT nextval('kpi_snapshot_seq'),
                            name VARCHAR,
                            domain VARCHAR,
                            status VARCHAR NOT NULL,
                            recorded_at TIMESTAMP NOT NULL,
                            payload VARCHAR NOT NULL
                        )
                    """)

                    conn.execute("""
                        CREATE INDEX IF NOT EXISTS idx_kpi_snapshots_name
                        ON kpi_snapshots(name, recorded_at)
                    """)

                    logger.info("duckdb_schema_initialized", table_count=len(_TABLES))
                    self._initialized = True

            except DataSourceUnavailable:
                raise
            except Exception as e:
                logger.error("duckdb_schema_initialization_failed", error=str(e))
                raise DataSourceUnavailable(f"Failed to initialize schema: {e}") from e

    def clear_for_testing(self) -> None:
        """
        Truncate all tables. For testing only; no-op unless TESTING is set.
        """
        if not os.environ.get("TESTING"):
            return
        with self._get_connection() as conn:
            for table in _TABLES:
                conn.execute(f"DELETE FROM {table}")

    def table_counts(self) -> dict[str, int]:
        """Row count per table, for health reporting."""
        try:
            with self._get_connection() as conn:
                return {
                    table: conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
                    for table in _TABLES
                }
        except Exception as e:
            logger.error("table_counts_failed", error=str(e))
            raise DataSourceUnavailable(f"Failed to count rows: {e}") from e

    # =========================================================================
    # Event Store
    # =========================================================================

    @staticmethod
    def _event_filter(
        event_type: Optional[EventType], start: datetime, end: datetime
    ) -> tuple[str, list[Any]]:
        clause = "event_time >= ? AND event_time < ?"
        params: list[Any] = [start, end]
        if event_type is not None:
            clause += " AND event_type = ?"
            params.append(EventType(event_type).value)
        return clause, params

    def _scalar(self, query: str, params: list[Any], operation: str) -> int:
        try:
            with self._get_connection() as conn:
                row = conn.execute(query, params).fetchone()
                return int(row[0]) if row and row[0] is not None else 0
        except Exception as e:
            logger.error(f"{operation}_failed", error=str(e))
            raise DataSourceUnavailable(f"Failed to {operation.replace('_', ' ')}: {e}") from e

    def _grouped(self, query: str, params: list[Any], operation: str) -> dict[str, int]:
        try:
            with self._get_connection() as conn:
                rows = conn.execute(query, params).fetchall()
                return {row[0]: int(row[1]) for row in rows}
        except Exception as e:
            logger.error(f"{operation}_failed", error=str(e))
            raise DataSourceUnavailable(f"Failed to {operation.replace('_', ' ')}: {e}") from e

    def count(self, event_type: Optional[EventType], start: datetime, end: datetime) -> int:
        clause, params = self._event_filter(event_type, start, end)
        return self._scalar(f"SELECT COUNT(*) FROM raw_events WHERE {clause}", params, "count_events")

    def count_by_service(
        self, event_type: Optional[EventType], start: datetime, end: datetime
    ) -> dict[str, int]:
        clause, params = self._event_filter(event_type, start, end)
        return self._grouped(
            f"""
            SELECT source_service, COUNT(*) FROM raw_events
            WHERE {clause}
            GROUP BY source_service
            """,
            params,
            "count_events_by_service",
        )

    def count_distinct_users(
        self, event_type: Optional[EventType], start: datetime, end: datetime
    ) -> int:
        clause, params = self._event_filter(event_type, start, end)
        return self._scalar(
            f"SELECT COUNT(DISTINCT user_id) FROM raw_events WHERE {clause}",
            params,
            "count_distinct_users",
        )

    def count_distinct_sessions(
        self, event_type: Optional[EventType], start: datetime, end: datetime
    ) -> int:
        clause, params = self._event_filter(event_type, start, end)
        return self._scalar(
            f"SELECT COUNT(DISTINCT session_id) FROM raw_events WHERE {clause}",
            params,
            "count_distinct_sessions",
        )

    def count_distinct_by_service(
        self,
        event_type: Optional[EventType],
        start: datetime,
        end: datetime,
        key: DistinctKey = "user_id",
    ) -> dict[str, int]:
        if key not in _DISTINCT_COLUMNS:
            raise ValueError(f"Unsupported distinct key: {key}")
        clause, params = self._event_filter(event_type, start, end)
        return self._grouped(
            f"""
            SELECT source_service, COUNT(DISTINCT {key}) FROM raw_events
            WHERE {clause}
            GROUP BY source_service
            """,
            params,
            "count_distinct_by_service",
        )

    def find(
        self,
        event_type: Optional[EventType],
        start: datetime,
        end: datetime,
        source_service: Optional[str] = None,
        user_id: Optional[str] = None,
        limit: int = 10000,
    ) -> list[RawEvent]:
        clause, params = self._event_filter(event_type, start, end)
        query = f"""
            SELECT event_id, event_type, source_service, user_id, session_id,
                   event_time, attributes
            FROM raw_events
            WHERE {clause}
        """

        if source_service:
            query += " AND source_service = ?"
            params.append(source_service)

        if user_id:
            query += " AND user_id = ?"
            params.append(user_id)

        query += " ORDER BY event_time ASC, event_id ASC LIMIT ?"
        params.append(limit)

        try:
            with self._get_connection() as conn:
                result = conn.execute(query, params).fetchall()

                events = [
                    RawEvent(
                        event_id=row[0],
                        event_type=row[1],
                        source_service=row[2],
                        user_id=row[3],
                        session_id=row[4],
                        timestamp=row[5],
                        attributes=json.loads(row[6]) if row[6] else {},
                    )
                    for row in result
                ]

                logger.debug("raw_events_read", count=len(events))
                return events

        except Exception as e:
            logger.error("find_events_failed", error=str(e))
            raise DataSourceUnavailable(f"Failed to read raw events: {e}") from e

    def write_events(self, events: list[RawEvent]) -> int:
        if not events:
            return 0

        try:
            with self._get_connection() as conn:
                written = 0
                for event in events:
                    try:
                        conn.execute(
                            """
                            INSERT INTO raw_events (
                                event_id, event_type, source_service, user_id,
                                session_id, event_time, attributes
                            ) VALUES (?, ?, ?, ?, ?, ?, ?)
                            """,
                            [
                                event.event_id,
                                event.event_type.value,
                                event.source_service,
                                event.user_id,
                                event.session_id,
                                event.timestamp,
                                json.dumps(event.attributes, default=str),
                            ],
                        )
                        written += 1
                    except duckdb.ConstraintException:
                        logger.debug("duplicate_event_skipped", event_id=event.event_id)

                logger.info("raw_events_written", count=written)
                return written

        except Exception as e:
            logger.error("write_events_failed", error=str(e))
            raise DataSourceUnavailable(f"Failed to write raw events: {e}") from e

    # =========================================================================
    # Metric Store
    # =========================================================================

    @staticmethod
    def _write_metric(conn, metric: AggregatedMetric) -> None:
        conn.execute(
            """
            DELETE FROM aggregated_metrics
            WHERE name = ? AND dimension = ? AND granularity = ?
              AND window_start = ? AND window_end = ?
            """,
            list(metric.upsert_key),
        )
        conn.execute(
            """
            INSERT INTO aggregated_metrics (
                metric_id, metric_type, name, dimension, value,
                window_start, window_end, granularity, created_at, attributes
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                metric.metric_id,
                metric.metric_type.value,
                metric.name,
                metric.dimension,
                metric.value,
                metric.window_start,
                metric.window_end,
                metric.granularity.value,
                metric.created_at,
                json.dumps(metric.attributes, default=str),
            ],
        )

    def upsert(self, metric: AggregatedMetric) -> None:
        self.upsert_many([metric])

    def upsert_many(self, metrics: list[AggregatedMetric]) -> int:
        if not metrics:
            return 0

        try:
            with self._transaction() as conn:
                for metric in metrics:
                    self._write_metric(conn, metric)

            logger.debug("aggregated_metrics_upserted", count=len(metrics))
            return len(metrics)

        except Exception as e:
            logger.error("upsert_metrics_failed", error=str(e), count=len(metrics))
            raise DataSourceUnavailable(f"Failed to upsert aggregated metrics: {e}") from e

    def query(
        self,
        name: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        dimension: Optional[str] = None,
        granularity: Optional[TimeGranularity] = None,
    ) -> list[AggregatedMetric]:
        query = """
            SELECT metric_id, metric_type, name, dimension, value, window_start,
                   window_end, granularity, created_at, attributes
            FROM aggregated_metrics
            WHERE name = ?
        """
        params: list[Any] = [name]

        if start is not None:
            query += " AND window_start >= ?"
            params.append(start)

        if end is not None:
            query += " AND window_start < ?"
            params.append(end)

        if dimension is not None:
            query += " AND dimension = ?"
            params.append(dimension)

        if granularity is not None:
            query += " AND granularity = ?"
            params.append(TimeGranularity(granularity).value)

        query += " ORDER BY window_start ASC, dimension ASC"

        try:
            with self._get_connection() as conn:
                result = conn.execute(query, params).fetchall()

                metrics = [
                    AggregatedMetric(
                        metric_id=row[0],
                        metric_type=row[1],
                        name=row[2],
                        dimension=row[3],
                        value=row[4],
                        window_start=row[5],
                        window_end=row[6],
                        granularity=row[7],
                        created_at=row[8],
                        attributes=json.loads(row[9]) if row[9] else {},
                    )
                    for row in result
                ]

                logger.debug("aggregated_metrics_read", name=name, count=len(metrics))
                return metrics

        except Exception as e:
            logger.error("query_metrics_failed", name=name, error=str(e))
            raise DataSourceUnavailable(f"Failed to query aggregated metrics: {e}") from e

    def delete_where(self, end_before: datetime) -> int:
        try:
            with self._transaction() as conn:
                row = conn.execute(
                    "SELECT COUNT(*) FROM aggregated_metrics WHERE window_end < ?",
                    [end_before],
                ).fetchone()
                conn.execute(
                    "DELETE FROM aggregated_metrics WHERE window_end < ?",
                    [end_before],
                )

            deleted = int(row[0])
            logger.info("aggregated_metrics_deleted", end_before=end_before.isoformat(), count=deleted)
            return deleted

        except Exception as e:
            logger.error("delete_metrics_failed", error=str(e))
            raise DataSourceUnavailable(f"Failed to delete aggregated metrics: {e}") from e

    # =========================================================================
    # KPI Snapshot Store
    # =========================================================================

    def write_kpi_snapshot(self, kpi: DomainKPI) -> str:
        try:
            with self._get_connection() as conn:
                conn.execute(
                    """
                    INSERT INTO kpi_snapshots (
                        snapshot_id, name, domain, status, recorded_at, payload
                    ) VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    [
                        kpi.kpi_id,
                        kpi.name,
                        kpi.domain,
                        kpi.status.value,
                        kpi.evaluated_at or utcnow(),
                        kpi.model_dump_json(),
                    ],
                )

            logger.debug("kpi_snapshot_written", kpi_id=kpi.kpi_id, name=kpi.name)
            return kpi.kpi_id

        except Exception as e:
            logger.error("write_kpi_snapshot_failed", kpi_id=kpi.kpi_id, error=str(e))
            raise DataSourceUnavailable(f"Failed to write KPI snapshot: {e}") from e

    def read_kpi_history(
        self,
        name: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        limit: int = 1000,
    ) -> list[DomainKPI]:
        query = "SELECT payload FROM kpi_snapshots WHERE name = ?"
        params: list[Any] = [name]

        if start is not None:
            query += " AND recorded_at >= ?"
            params.append(start)

        if end is not None:
            query += " AND recorded_at < ?"
            params.append(end)

        query += " ORDER BY recorded_at ASC, seq ASC LIMIT ?"
        params.append(limit)

        try:
            with self._get_connection() as conn:
                result = conn.execute(query, params).fetchall()
                return [DomainKPI.model_validate_json(row[0]) for row in result]

        except Exception as e:
            logger.error("read_kpi_history_failed", name=name, error=str(e))
            raise DataSourceUnavailable(f"Failed to read KPI history: {e}") from e

    def read_latest_kpis(self) -> list[DomainKPI]:
        try:
            with self._get_connection() as conn:
                result = conn.execute(
                    """
                    SELECT payload FROM kpi_snapshots
                    QUALIFY ROW_NUMBER() OVER (
                        PARTITION BY name ORDER BY recorded_at DESC, seq DESC
                    ) = 1
                    ORDER BY name ASC
                    """
                ).fetchall()
                return [DomainKPI.model_validate_json(row[0]) for row in result]

        except Exception as e:
            logger.error("read_latest_kpis_failed", error=str(e))
            raise DataSourceUnavailable(f"Failed to read latest KPIs: {e}") from e
