"""Collectors for KPIs reported by external domains."""

from .domain_client import (
    CircuitBreaker,
    CircuitOpenError,
    CircuitState,
    DomainKPISource,
    HttpDomainCollector,
    build_collectors,
    collect_all,
    parse_kpis,
)

__all__ = [
    "CircuitBreaker",
    "CircuitOpenError",
    "CircuitState",
    "DomainKPISource",
    "HttpDomainCollector",
    "build_collectors",
    "collect_all",
    "parse_kpis",
]
