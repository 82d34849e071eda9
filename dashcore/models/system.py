"""
Operational models: aggregation run manifests and prune results.
"""

from datetime import datetime
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from dashcore.utils.clock import utcnow

from .enums import RunStatus, TimeGranularity


class AggregationRun(BaseModel):
    """
    Execution manifest for one aggregation pass over a range.

    Attributes:
        run_id: Unique identifier for this run
        range_start: Start of the aggregated range
        range_end: End of the aggregated range
        granularity: Bucket granularity
        families: Metric family names included in the pass
        started_at: When the pass began
        completed_at: When the pass ended (None while running)
        windows_total: Number of windows the bucketer produced
        windows_processed: Windows fully aggregated and written
        metrics_written: Metric rows upserted
        status: running, completed, failed or cancelled
        error: Failure message, if any
    """

    run_id: str = Field(
        default_factory=lambda: str(uuid4()),
        description="Unique identifier for this run",
    )
    range_start: datetime = Field(description="Start of the aggregated range")
    range_end: datetime = Field(description="End of the aggregated range")
    granularity: TimeGranularity = Field(description="Bucket granularity")
    families: list[str] = Field(default_factory=list, description="Metric families included")
    started_at: datetime = Field(default_factory=utcnow, description="When the pass began")
    completed_at: Optional[datetime] = Field(default=None, description="When the pass ended")
    windows_total: int = Field(default=0, ge=0, description="Windows produced by the bucketer")
    windows_processed: int = Field(default=0, ge=0, description="Windows aggregated and written")
    metrics_written: int = Field(default=0, ge=0, description="Metric rows upserted")
    status: RunStatus = Field(default=RunStatus.RUNNING, description="Run status")
    error: Optional[str] = Field(default=None, description="Failure message, if any")

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()


class PruneResult(BaseModel):
    """Outcome of one retention prune."""

    cutoff: datetime = Field(description="Rows with window_end before this were deleted")
    deleted: int = Field(ge=0, description="Rows deleted")
    started_at: datetime = Field(default_factory=utcnow, description="When the prune began")
    completed_at: datetime = Field(default_factory=utcnow, description="When the prune ended")
