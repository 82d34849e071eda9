"""
KPI evaluation router.

Wired to:
- KPIService for evaluation and snapshot persistence
- Domain collectors for pulling KPIs from external domains
"""

from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from dashcore.connectors import collect_all, parse_kpis
from dashcore.dependencies import get_collectors, get_kpi_service
from dashcore.engine.kpi_service import KPIService
from dashcore.models.enums import TimeGranularity
from dashcore.models.metrics import OVERALL_DIMENSION
from dashcore.storage import StorageBackend, get_storage
from dashcore.utils.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()


class EvaluateMetricRequest(BaseModel):
    """Evaluate an aggregated metric as a KPI."""

    name: str = Field(..., min_length=1, description="Aggregated metric name")
    granularity: TimeGranularity = Field(default=TimeGranularity.DAY)
    as_of: Optional[datetime] = Field(default=None, description="Evaluate as of (default: now)")
    dimension: str = Field(default=OVERALL_DIMENSION)
    domain: str = Field(default="platform")
    category: Optional[str] = None
    unit: Optional[str] = None


@router.post("/evaluate")
def evaluate_metric_kpi(
    request: EvaluateMetricRequest,
    service: KPIService = Depends(get_kpi_service),
):
    """Evaluate the latest complete window of a metric and store the snapshot."""
    try:
        kpi = service.evaluate_metric_kpi(
            request.name,
            request.granularity,
            as_of=request.as_of,
            dimension=request.dimension,
            domain=request.domain,
            category=request.category,
            unit=request.unit,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))

    return {"success": True, "data": kpi.model_dump(mode="json")}


@router.post("/domain")
def evaluate_domain_kpis(
    items: list[dict[str, Any]],
    service: KPIService = Depends(get_kpi_service),
):
    """Normalize and evaluate KPIs reported by a domain; invalid entries are skipped."""
    evaluated = service.evaluate_domain_kpis(parse_kpis(items))
    return {
        "success": True,
        "data": [k.model_dump(mode="json") for k in evaluated],
        "skipped": len(items) - len(evaluated),
    }


@router.post("/collect")
def collect_domain_kpis(
    service: KPIService = Depends(get_kpi_service),
    collectors=Depends(get_collectors),
):
    """Pull KPIs from every configured domain and evaluate them."""
    collected = collect_all(list(collectors))
    evaluated = service.evaluate_domain_kpis(collected)
    logger.info("domain_kpis_collected", domains=len(collectors), kpis=len(evaluated))
    return {"success": True, "data": [k.model_dump(mode="json") for k in evaluated]}


@router.get("/latest")
def latest_kpis(storage: StorageBackend = Depends(get_storage)):
    """Most recent snapshot of every KPI."""
    return {
        "success": True,
        "data": [k.model_dump(mode="json") for k in storage.read_latest_kpis()],
    }


@router.get("/attention")
def kpis_needing_attention(service: KPIService = Depends(get_kpi_service)):
    """KPIs whose latest status is WARNING or CRITICAL."""
    return {
        "success": True,
        "data": [k.model_dump(mode="json") for k in service.kpis_needing_attention()],
    }


@router.get("/{name}/history")
def kpi_history(
    name: str,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = 100,
    storage: StorageBackend = Depends(get_storage),
):
    """Snapshots of one KPI, oldest first."""
    limit = max(1, min(1000, limit))
    history = storage.read_kpi_history(name, start=start, end=end, limit=limit)
    return {
        "success": True,
        "data": [k.model_dump(mode="json") for k in history],
        "count": len(history),
    }
