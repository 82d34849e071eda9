"""
Composition root: builds engine components from settings.

Routers, the app lifespan and CLI scripts obtain components here; the
components themselves never read settings.
"""

from datetime import timedelta
from functools import lru_cache

from dashcore.config import get_settings
from dashcore.connectors import HttpDomainCollector, build_collectors
from dashcore.engine.aggregator import Aggregator
from dashcore.engine.kpi_evaluator import KPIEvaluator
from dashcore.engine.kpi_service import KPIService
from dashcore.engine.normalization import DataNormalizer
from dashcore.engine.pruner import RetentionPruner
from dashcore.engine.scheduler import Scheduler, build_default_jobs
from dashcore.models.kpis import ThresholdRegistry
from dashcore.storage import get_storage


@lru_cache
def get_threshold_registry() -> ThresholdRegistry:
    """
    Load KPI thresholds once.

    Raises:
        ThresholdMisconfiguration: In strict mode, if any entry is incomplete
    """
    settings = get_settings()
    return ThresholdRegistry.from_config(
        settings.load_threshold_config(), strict=settings.kpi_thresholds_strict
    )


@lru_cache
def get_aggregator() -> Aggregator:
    settings = get_settings()
    storage = get_storage()
    return Aggregator(storage, storage, max_workers=settings.aggregation_max_workers)


@lru_cache
def get_pruner() -> RetentionPruner:
    settings = get_settings()
    return RetentionPruner(get_storage(), retention=timedelta(days=settings.retention_days))


@lru_cache
def get_kpi_evaluator() -> KPIEvaluator:
    settings = get_settings()
    return KPIEvaluator(
        registry=get_threshold_registry(),
        preserve_upstream_status=settings.preserve_upstream_status,
        slope_threshold=settings.trend_slope_threshold,
        min_points=settings.trend_min_points,
        volatility_cv=settings.trend_volatility_cv,
        volatility_r2=settings.trend_volatility_r2,
    )


@lru_cache
def get_kpi_service() -> KPIService:
    storage = get_storage()
    return KPIService(storage, storage, get_kpi_evaluator(), DataNormalizer())


@lru_cache
def get_collectors() -> tuple[HttpDomainCollector, ...]:
    settings = get_settings()
    return tuple(
        build_collectors(
            settings.domain_endpoints,
            timeout=settings.domain_fetch_timeout_seconds,
            failure_threshold=settings.circuit_failure_threshold,
            recovery_timeout=settings.circuit_recovery_seconds,
        )
    )


@lru_cache
def get_scheduler() -> Scheduler:
    settings = get_settings()
    return Scheduler(
        build_default_jobs(get_aggregator(), get_pruner()),
        poll_seconds=settings.scheduler_poll_seconds,
    )
