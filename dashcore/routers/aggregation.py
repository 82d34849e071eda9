"""
Aggregation trigger router.

Wired to:
- Aggregator for range passes
- RetentionPruner for on-demand pruning
"""

from datetime import datetime, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, field_validator, model_validator

from dashcore.dependencies import get_aggregator, get_pruner
from dashcore.engine.aggregator import Aggregator
from dashcore.engine.pruner import RetentionPruner
from dashcore.models.enums import TimeGranularity
from dashcore.utils.clock import to_naive_utc
from dashcore.utils.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()


class AggregateRequest(BaseModel):
    """Aggregate a range at one granularity."""

    start: datetime = Field(..., description="Range start")
    end: datetime = Field(..., description="Range end")
    granularity: TimeGranularity = Field(default=TimeGranularity.HOUR)
    families: Optional[list[str]] = Field(default=None, description="Family names (default: all)")
    step_seconds: Optional[int] = Field(
        default=None, gt=0, description="Window width for custom granularity"
    )

    @field_validator("start", "end")
    @classmethod
    def as_naive_utc(cls, v: datetime) -> datetime:
        return to_naive_utc(v)

    @model_validator(mode="after")
    def check_range(self) -> "AggregateRequest":
        if self.start > self.end:
            raise ValueError("start must not be after end")
        return self


class PruneRequest(BaseModel):
    """Prune aggregated metrics; without a cutoff the configured retention applies."""

    cutoff: Optional[datetime] = Field(default=None, description="Delete rows ending before this")


@router.post("/run")
def run_aggregation(
    request: AggregateRequest,
    aggregator: Aggregator = Depends(get_aggregator),
):
    """Run one aggregation pass synchronously and return its manifest."""
    logger.info(
        "aggregation_requested",
        start=request.start.isoformat(),
        end=request.end.isoformat(),
        granularity=request.granularity.value,
    )

    step = timedelta(seconds=request.step_seconds) if request.step_seconds else None
    try:
        run = aggregator.aggregate(
            request.start,
            request.end,
            request.granularity,
            families=request.families,
            step=step,
        )
    except KeyError as e:
        raise HTTPException(status_code=422, detail=str(e))

    return {"success": True, "data": run.model_dump(mode="json")}


@router.post("/prune")
def run_prune(
    request: PruneRequest,
    pruner: RetentionPruner = Depends(get_pruner),
):
    """Delete aggregated metrics past the cutoff (or past retention)."""
    if request.cutoff is not None:
        deleted = pruner.prune(request.cutoff)
        cutoff = request.cutoff
    else:
        result = pruner.prune_expired()
        deleted, cutoff = result.deleted, result.cutoff

    return {"success": True, "data": {"cutoff": cutoff.isoformat(), "deleted": deleted}}


@router.get("/families")
async def list_families(aggregator: Aggregator = Depends(get_aggregator)):
    """Configured metric families and their definitions."""
    return {
        "success": True,
        "data": {
            name: [definition.model_dump(mode="json") for definition in definitions]
            for name, definitions in aggregator.families.items()
        },
    }
