"""
Configuration management using pydantic-settings.
All settings loaded from environment variables (12-factor app).

Only the composition root (app factory, scheduler wiring, CLI scripts)
calls get_settings(); engine components receive explicit values.
"""

import json
from functools import lru_cache
from typing import Any, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    db_path: str = Field(default="./data/dashcore.duckdb", description="DuckDB file path")

    # API
    api_host: str = Field(default="0.0.0.0", description="API host")
    api_port: int = Field(default=8000, description="API port")
    api_reload: bool = Field(default=False, description="Enable hot reload")

    # Logging
    log_level: str = Field(default="info", description="Log level")
    log_format: str = Field(default="json", description="Log format (json|console)")

    # Aggregation
    aggregation_max_workers: int = Field(
        default=1, ge=1, le=32, description="Thread pool size for metric family fan-out"
    )
    retention_days: int = Field(
        default=365, ge=1, description="Aggregated metrics older than this are pruned"
    )

    # Scheduler
    scheduler_enabled: bool = Field(
        default=False, description="Start cadence workers with the API process"
    )
    scheduler_poll_seconds: float = Field(
        default=1.0, gt=0.0, description="Upper bound on a worker's sleep between checks"
    )

    # KPI evaluation
    kpi_thresholds: dict[str, dict[str, Any]] = Field(
        default_factory=dict,
        description="Per-KPI thresholds as JSON: {name: {excellent, good, warning, critical, higher_is_better}}",
    )
    kpi_thresholds_path: Optional[str] = Field(
        default=None, description="Optional JSON file with per-KPI thresholds"
    )
    kpi_thresholds_strict: bool = Field(
        default=True, description="Reject partially configured thresholds at load"
    )
    preserve_upstream_status: bool = Field(
        default=False, description="Keep a status supplied by the producer instead of recomputing"
    )
    trend_slope_threshold: float = Field(
        default=0.1, ge=0.0, description="|slope| at or below this is a stable trend"
    )
    trend_min_points: int = Field(
        default=3, ge=2, description="Minimum history length for slope-based trends"
    )
    trend_volatility_cv: float = Field(
        default=0.5, ge=0.0, description="Coefficient of variation above which a poor fit is volatile"
    )
    trend_volatility_r2: float = Field(
        default=0.3, ge=0.0, le=1.0, description="r-squared below which a series may be volatile"
    )

    # Domain collectors
    domain_endpoints: dict[str, str] = Field(
        default_factory=dict,
        description="Domain name to KPI endpoint URL (e.g. courier, social, warehouse)",
    )
    domain_fetch_timeout_seconds: float = Field(
        default=10.0, gt=0.0, description="Timeout for domain KPI fetches"
    )
    circuit_failure_threshold: int = Field(
        default=5, ge=1, description="Consecutive failures before the circuit opens"
    )
    circuit_recovery_seconds: float = Field(
        default=30.0, gt=0.0, description="Seconds an open circuit waits before a trial call"
    )

    # Development
    dev_mode: bool = Field(default=True, description="Development mode")
    testing: bool = Field(default=False, description="Testing mode")

    @field_validator("kpi_thresholds", "domain_endpoints", mode="before")
    @classmethod
    def parse_json_mapping(cls, v: Any) -> Any:
        """Accept JSON strings for mapping settings."""
        if isinstance(v, str):
            return json.loads(v) if v.strip() else {}
        return v

    def load_threshold_config(self) -> dict[str, dict[str, Any]]:
        """
        Merge thresholds from kpi_thresholds_path (if any) with kpi_thresholds.

        Inline settings win over the file for the same KPI name.
        """
        merged: dict[str, dict[str, Any]] = {}
        if self.kpi_thresholds_path:
            with open(self.kpi_thresholds_path, encoding="utf-8") as fh:
                merged.update(json.load(fh))
        merged.update(self.kpi_thresholds)
        return merged


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to ensure singleton behavior.
    """
    return Settings()
