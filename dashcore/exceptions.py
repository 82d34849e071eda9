"""
Error taxonomy for dashcore.

Store adapters raise DataSourceUnavailable; the aggregator wraps anything
raised during a pass in AggregationFailure; normalization raises
InvalidMetric for records it skips; threshold loading raises
ThresholdMisconfiguration. KPI evaluation itself never raises.
"""


class DashcoreError(Exception):
    """Base exception for all dashcore failures."""

    pass


class DataSourceUnavailable(DashcoreError):
    """Raised when the event or metric store cannot be reached or a query fails."""

    pass


class InvalidMetric(DashcoreError):
    """Raised when a metric or KPI is missing identity fields or fails its data-type check."""

    def __init__(self, message: str, item_id: str | None = None):
        super().__init__(message)
        self.item_id = item_id


class AggregationFailure(DashcoreError):
    """Raised when an aggregation pass fails; wraps the lower-level cause."""

    def __init__(self, message: str, run_id: str | None = None):
        super().__init__(message)
        self.run_id = run_id


class ThresholdMisconfiguration(DashcoreError):
    """Raised at configuration load when a KPI threshold set is incomplete or invalid."""

    def __init__(self, message: str, kpi_name: str | None = None):
        super().__init__(message)
        self.kpi_name = kpi_name
