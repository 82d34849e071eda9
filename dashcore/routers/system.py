"""
System health and scheduler router.
"""

import time

from fastapi import APIRouter, Depends, HTTPException

from dashcore import __version__
from dashcore.dependencies import get_scheduler
from dashcore.engine.scheduler import Scheduler
from dashcore.storage import get_storage
from dashcore.utils.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()

_startup_time = time.time()


@router.get("/health")
def system_health():
    """Service health including storage connectivity and row counts."""
    db_status = "healthy"
    tables = {}
    try:
        tables = get_storage().table_counts()
    except Exception as e:
        db_status = f"unhealthy: {e}"

    return {
        "success": True,
        "data": {
            "status": "healthy" if db_status == "healthy" else "degraded",
            "version": __version__,
            "uptime_seconds": round(time.time() - _startup_time, 1),
            "database": db_status,
            "tables": tables,
        },
    }


@router.get("/scheduler")
async def scheduler_status(scheduler: Scheduler = Depends(get_scheduler)):
    """Per-cadence last run, next fire and counters."""
    return {"success": True, "data": scheduler.status()}


@router.post("/scheduler/{job_name}/run")
def trigger_job(job_name: str, scheduler: Scheduler = Depends(get_scheduler)):
    """Run a cadence job now; skipped if that cadence is already running."""
    if job_name not in scheduler.jobs:
        raise HTTPException(status_code=404, detail=f"Job {job_name} not found")

    ran = scheduler.run_now(job_name)
    job = scheduler.jobs[job_name]
    logger.info("scheduler_job_triggered", job=job_name, ran=ran)
    return {
        "success": True,
        "data": {"job": job_name, "ran": ran, "last_error": job.last_error},
    }
