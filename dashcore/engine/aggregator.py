"""
Aggregator: rolls raw events up into windowed metrics.

For every window produced by the bucketer, each metric definition is
evaluated against the event store and the resulting rows are written to
the metric store as one batch. Rows are keyed by
(name, dimension, granularity, window), so re-running a window replaces
its rows with identical values.
"""

import contextvars
import threading
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from typing import Iterable, Mapping, Optional, Sequence

import structlog

from dashcore.exceptions import AggregationFailure
from dashcore.models.enums import MetricType, RunStatus, TimeGranularity
from dashcore.models.metrics import OVERALL_DIMENSION, AggregatedMetric, service_dimension
from dashcore.models.system import AggregationRun
from dashcore.storage.base import EventStore, MetricStore
from dashcore.utils.clock import to_naive_utc, utcnow
from dashcore.utils.logging import log_context

from .bucketer import TimeWindow, WindowSequence, generate_windows
from .families import (
    DEFAULT_FAMILIES,
    AverageMetric,
    CountMetric,
    MetricDefinition,
    RateMetric,
    UniqueCountMetric,
)


def safe_rate(numerator: float, denominator: float) -> float:
    """numerator / denominator, or 0.0 when the denominator is 0."""
    return numerator / denominator if denominator > 0 else 0.0


class Aggregator:
    """
    Computes count, unique-count, rate and average metrics per window.

    Args:
        event_store: Source of raw events
        metric_store: Destination for aggregated rows
        families: Metric families by name (defaults to DEFAULT_FAMILIES)
        max_workers: Threads used to evaluate one window's definitions;
            1 evaluates them in the calling thread
    """

    def __init__(
        self,
        event_store: EventStore,
        metric_store: MetricStore,
        families: Optional[Mapping[str, Sequence[MetricDefinition]]] = None,
        max_workers: int = 1,
    ):
        self.event_store = event_store
        self.metric_store = metric_store
        self.families = dict(families if families is not None else DEFAULT_FAMILIES)
        self.max_workers = max(1, max_workers)
        self.logger = structlog.get_logger()

    # =========================================================================
    # Per-window operations
    # =========================================================================

    def count(
        self, definition: CountMetric, window: TimeWindow, granularity: TimeGranularity
    ) -> list[AggregatedMetric]:
        """One overall row plus one row per service that emitted matching events."""
        total = self.event_store.count(definition.event_type, window.start, window.end)
        per_service = self.event_store.count_by_service(
            definition.event_type, window.start, window.end
        )
        attributes = {
            "event_type": definition.event_type.value if definition.event_type else None
        }
        return self._rows(
            definition.name,
            MetricType.COUNT,
            total,
            per_service,
            window,
            granularity,
            attributes,
        )

    def unique_count(
        self, definition: UniqueCountMetric, window: TimeWindow, granularity: TimeGranularity
    ) -> list[AggregatedMetric]:
        """Distinct users or sessions, overall and per service. Missing ids are ignored."""
        if definition.key == "session_id":
            total = self.event_store.count_distinct_sessions(
                definition.event_type, window.start, window.end
            )
        else:
            total = self.event_store.count_distinct_users(
                definition.event_type, window.start, window.end
            )
        per_service = self.event_store.count_distinct_by_service(
            definition.event_type, window.start, window.end, key=definition.key
        )
        attributes = {
            "event_type": definition.event_type.value if definition.event_type else None,
            "key": definition.key,
        }
        return self._rows(
            definition.name,
            MetricType.UNIQUE_COUNT,
            total,
            per_service,
            window,
            granularity,
            attributes,
        )

    def rate(
        self, definition: RateMetric, window: TimeWindow, granularity: TimeGranularity
    ) -> list[AggregatedMetric]:
        """Overall ratio of two counts; 0 when the denominator count is 0."""
        numerator = self.event_store.count(definition.numerator, window.start, window.end)
        denominator = self.event_store.count(definition.denominator, window.start, window.end)
        return [
            AggregatedMetric.create(
                name=definition.name,
                metric_type=MetricType.RATE,
                value=safe_rate(numerator, denominator),
                window_start=window.start,
                window_end=window.end,
                granularity=granularity,
                attributes={
                    "numerator_event_type": definition.numerator.value,
                    "denominator_event_type": definition.denominator.value,
                    "numerator": numerator,
                    "denominator": denominator,
                },
            )
        ]

    def average(
        self, definition: AverageMetric, window: TimeWindow, granularity: TimeGranularity
    ) -> list[AggregatedMetric]:
        """Overall events per distinct user or session; 0 when nobody is identified."""
        events = self.event_store.count(definition.event_type, window.start, window.end)
        if definition.per == "session_id":
            distinct = self.event_store.count_distinct_sessions(
                definition.event_type, window.start, window.end
            )
        else:
            distinct = self.event_store.count_distinct_users(
                definition.event_type, window.start, window.end
            )
        return [
            AggregatedMetric.create(
                name=definition.name,
                metric_type=MetricType.AVERAGE,
                value=safe_rate(events, distinct),
                window_start=window.start,
                window_end=window.end,
                granularity=granularity,
                attributes={
                    "event_type": definition.event_type.value if definition.event_type else None,
                    "per": definition.per,
                    "events": events,
                    "distinct": distinct,
                },
            )
        ]

    def compute(
        self, definition: MetricDefinition, window: TimeWindow, granularity: TimeGranularity
    ) -> list[AggregatedMetric]:
        """
        Dispatch a definition to its operation.

        Raises:
            TypeError: For anything that is not a known metric definition
        """
        if isinstance(definition, CountMetric):
            return self.count(definition, window, granularity)
        if isinstance(definition, UniqueCountMetric):
            return self.unique_count(definition, window, granularity)
        if isinstance(definition, RateMetric):
            return self.rate(definition, window, granularity)
        if isinstance(definition, AverageMetric):
            return self.average(definition, window, granularity)
        raise TypeError(f"Unsupported metric definition: {type(definition).__name__}")

    def aggregate_window(
        self,
        window: TimeWindow,
        granularity: TimeGranularity,
        definitions: Sequence[MetricDefinition],
    ) -> list[AggregatedMetric]:
        """
        Compute every definition for one window and write the rows as one batch.

        Returns:
            The rows written
        """
        if self.max_workers > 1 and len(definitions) > 1:
            # One context copy per task; a Context cannot be entered by two threads.
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                futures = [
                    pool.submit(
                        contextvars.copy_context().run, self.compute, d, window, granularity
                    )
                    for d in definitions
                ]
                results = [future.result() for future in futures]
        else:
            results = [self.compute(d, window, granularity) for d in definitions]

        rows = [row for result in results for row in result]
        self.metric_store.upsert_many(rows)
        return rows

    # =========================================================================
    # Range pass
    # =========================================================================

    def resolve_families(
        self, families: Optional[Iterable[str]] = None
    ) -> tuple[list[str], list[MetricDefinition]]:
        """
        Look up family names; None selects every configured family.

        Raises:
            KeyError: If a family name is not configured
        """
        names = list(families) if families is not None else list(self.families)
        unknown = [name for name in names if name not in self.families]
        if unknown:
            raise KeyError(f"Unknown metric families: {', '.join(unknown)}")
        definitions = [d for name in names for d in self.families[name]]
        return names, definitions

    def aggregate(
        self,
        start: datetime,
        end: datetime,
        granularity: TimeGranularity,
        families: Optional[Iterable[str]] = None,
        cancel_event: Optional[threading.Event] = None,
        step: Optional[timedelta] = None,
    ) -> AggregationRun:
        """
        Aggregate every window of [start, end] at one granularity.

        The pass stops before the next window once `cancel_event` is set and
        reports status "cancelled"; windows already written stay written.

        Args:
            start: Range start (aware values are converted to naive UTC)
            end: Range end
            granularity: Bucket granularity
            families: Family names to include (default: all)
            cancel_event: Optional event checked between windows
            step: Window width for CUSTOM granularity

        Returns:
            AggregationRun describing the pass

        Raises:
            AggregationFailure: If any window fails; wraps the cause
            KeyError: If a family name is unknown
            ValueError: If start is after end
        """
        start, end = to_naive_utc(start), to_naive_utc(end)
        family_names, definitions = self.resolve_families(families)
        windows = generate_windows(start, end, granularity, step)
        run = AggregationRun(
            range_start=start,
            range_end=end,
            granularity=granularity,
            families=family_names,
        )

        with log_context(run_id=run.run_id, granularity=run.granularity.value):
            return self._run_pass(run, windows, definitions, cancel_event)

    def _run_pass(
        self,
        run: AggregationRun,
        windows: WindowSequence,
        definitions: Sequence[MetricDefinition],
        cancel_event: Optional[threading.Event],
    ) -> AggregationRun:
        self.logger.info(
            "aggregation_pass_started",
            start=run.range_start.isoformat(),
            end=run.range_end.isoformat(),
            families=run.families,
        )

        try:
            for window in windows:
                run.windows_total += 1
                if cancel_event is not None and cancel_event.is_set():
                    run.status = RunStatus.CANCELLED
                    break

                rows = self.aggregate_window(window, run.granularity, definitions)
                run.windows_processed += 1
                run.metrics_written += len(rows)

                self.logger.debug(
                    "window_aggregated",
                    window_start=window.start.isoformat(),
                    window_end=window.end.isoformat(),
                    rows=len(rows),
                )
        except Exception as e:
            run.status = RunStatus.FAILED
            run.error = str(e)
            run.completed_at = utcnow()
            self.logger.error(
                "aggregation_pass_failed",
                windows_processed=run.windows_processed,
                error=str(e),
            )
            raise AggregationFailure(
                f"Aggregation of {run.granularity.value} windows from "
                f"{run.range_start.isoformat()} to {run.range_end.isoformat()} failed: {e}",
                run_id=run.run_id,
            ) from e

        if run.status == RunStatus.CANCELLED:
            run.windows_total = len(windows)
        else:
            run.status = RunStatus.COMPLETED
        run.completed_at = utcnow()

        self.logger.info(
            "aggregation_pass_finished",
            status=run.status.value,
            windows_processed=run.windows_processed,
            metrics_written=run.metrics_written,
            duration_seconds=run.duration_seconds,
        )
        return run

    # =========================================================================
    # Reads
    # =========================================================================

    def time_series(
        self,
        name: str,
        start: datetime,
        end: datetime,
        granularity: TimeGranularity,
        dimension: Optional[str] = None,
    ) -> dict[str, list[tuple[datetime, float]]]:
        """Stored values of one metric grouped by dimension, oldest window first."""
        series: dict[str, list[tuple[datetime, float]]] = defaultdict(list)
        for metric in self.metric_store.query(
            name, start=start, end=end, dimension=dimension, granularity=granularity
        ):
            series[metric.dimension].append((metric.window_start, metric.value))
        return dict(series)

    @staticmethod
    def _rows(
        name: str,
        metric_type: MetricType,
        total: int,
        per_service: Mapping[str, int],
        window: TimeWindow,
        granularity: TimeGranularity,
        attributes: dict,
    ) -> list[AggregatedMetric]:
        rows = [
            AggregatedMetric.create(
                name=name,
                metric_type=metric_type,
                value=total,
                window_start=window.start,
                window_end=window.end,
                granularity=granularity,
                dimension=OVERALL_DIMENSION,
                attributes=attributes,
            )
        ]
        for service in sorted(per_service):
            rows.append(
                AggregatedMetric.create(
                    name=name,
                    metric_type=metric_type,
                    value=per_service[service],
                    window_start=window.start,
                    window_end=window.end,
                    granularity=granularity,
                    dimension=service_dimension(service),
                    attributes=attributes,
                )
            )
        return rows
