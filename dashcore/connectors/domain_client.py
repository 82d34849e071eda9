"""
Domain KPI collectors.

Each business domain (courier, social, warehouse, ...) exposes its KPIs
over HTTP. Fetches are bounded by a timeout and guarded by a three-state
circuit breaker: after repeated failures the circuit opens and callers get
the fallback without touching the network until a recovery period passes.
"""

import threading
import time
from enum import Enum
from typing import Any, Callable, Optional, Protocol, TypeVar

import httpx
import structlog
from pydantic import ValidationError

from dashcore.models.kpis import DomainKPI

logger = structlog.get_logger()

T = TypeVar("T")


class DomainKPISource(Protocol):
    """Anything that can report the current KPIs of one domain."""

    domain: str

    def fetch_kpis(self) -> list[DomainKPI]: ...


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitOpenError(Exception):
    """Raised by CircuitBreaker.call when the circuit is open."""

    pass


class CircuitBreaker:
    """
    Three-state circuit breaker.

    CLOSED passes calls through and counts consecutive failures; reaching
    `failure_threshold` opens the circuit. OPEN rejects calls until
    `recovery_timeout` seconds have passed, then moves to HALF_OPEN, which
    lets one trial call through: success closes the circuit, failure
    reopens it.

    Args:
        name: Name used in logs
        failure_threshold: Consecutive failures that open the circuit
        recovery_timeout: Seconds an open circuit waits before a trial call
        clock: Monotonic seconds source
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.clock = clock
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._opened_at: Optional[float] = None
        self._trial_in_flight = False
        self._lock = threading.Lock()

    def _refresh(self) -> CircuitState:
        # Caller holds _lock.
        if (
            self._state == CircuitState.OPEN
            and self.clock() - self._opened_at >= self.recovery_timeout
        ):
            self._state = CircuitState.HALF_OPEN
            logger.info("circuit_half_open", circuit=self.name)
        return self._state

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._refresh()

    def _admit(self) -> bool:
        """Whether a call may proceed; claims the single HALF_OPEN trial slot."""
        with self._lock:
            state = self._refresh()
            if state == CircuitState.OPEN:
                return False
            if state == CircuitState.HALF_OPEN:
                if self._trial_in_flight:
                    return False
                self._trial_in_flight = True
            return True

    def record_success(self) -> None:
        with self._lock:
            if self._state != CircuitState.CLOSED:
                logger.info("circuit_closed", circuit=self.name)
            self._state = CircuitState.CLOSED
            self._failures = 0
            self._opened_at = None
            self._trial_in_flight = False

    def record_failure(self) -> None:
        with self._lock:
            self._failures += 1
            self._trial_in_flight = False
            if self._state == CircuitState.HALF_OPEN or self._failures >= self.failure_threshold:
                self._state = CircuitState.OPEN
                self._opened_at = self.clock()
                logger.warning("circuit_opened", circuit=self.name, failures=self._failures)

    def call(self, fetch: Callable[[], T]) -> T:
        """
        Run `fetch` through the breaker.

        Raises:
            CircuitOpenError: If the circuit is open, or half-open with its
                trial call already in flight
        """
        if not self._admit():
            raise CircuitOpenError(f"Circuit '{self.name}' is open")
        try:
            result = fetch()
        except Exception:
            self.record_failure()
            raise
        self.record_success()
        return result

    def fetch_with_fallback(self, fetch: Callable[[], T], fallback: Callable[[Exception], T]) -> T:
        """
        Run `fetch`, or return `fallback(error)` when it fails or the circuit is open.
        """
        try:
            return self.call(fetch)
        except Exception as e:
            logger.warning("circuit_fallback_used", circuit=self.name, error=str(e))
            return fallback(e)


class HttpDomainCollector:
    """
    Fetches a domain's KPIs from a JSON endpoint.

    The endpoint returns either a list of KPI objects or
    {"success": true, "data": [...]}.

    Args:
        domain: Domain name stamped on KPIs that lack one
        url: KPI endpoint
        timeout: Request timeout in seconds
        breaker: Circuit breaker guarding the endpoint
        client: Optional httpx.Client (a new one per fetch otherwise)
    """

    def __init__(
        self,
        domain: str,
        url: str,
        timeout: float = 10.0,
        breaker: Optional[CircuitBreaker] = None,
        client: Optional[httpx.Client] = None,
    ):
        self.domain = domain
        self.url = url
        self.timeout = timeout
        self.breaker = breaker or CircuitBreaker(name=domain)
        self._client = client

    def _request(self) -> list[Any]:
        if self._client is not None:
            response = self._client.get(self.url, timeout=self.timeout)
        else:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.get(self.url)
        response.raise_for_status()

        payload: Any = response.json()
        if isinstance(payload, dict):
            payload = payload.get("data", [])
        if not isinstance(payload, list):
            raise ValueError(f"Unexpected KPI payload from {self.url}: {type(payload).__name__}")
        return payload

    def fetch_kpis(self) -> list[DomainKPI]:
        """
        Current KPIs, or an empty list when the domain is unavailable.

        Only transport, HTTP and payload-shape errors count against the
        breaker; individual malformed KPIs are skipped.
        """
        items = self.breaker.fetch_with_fallback(self._request, lambda e: [])
        kpis = parse_kpis(items, default_domain=self.domain)
        logger.info(
            "domain_kpis_fetched", domain=self.domain, count=len(kpis), received=len(items)
        )
        return kpis


def parse_kpis(items: list[Any], default_domain: Optional[str] = None) -> list[DomainKPI]:
    """
    Validate raw KPI payloads one by one, skipping those that fail.

    KPIs without a domain are stamped with `default_domain` when given.
    """
    kpis = []
    for index, item in enumerate(items):
        try:
            kpi = DomainKPI.model_validate(item)
        except ValidationError as e:
            logger.warning(
                "invalid_kpi_skipped",
                domain=default_domain,
                index=index,
                name=item.get("name") if isinstance(item, dict) else None,
                errors=e.error_count(),
            )
            continue
        if kpi.domain is None and default_domain is not None:
            kpi = kpi.model_copy(update={"domain": default_domain})
        kpis.append(kpi)
    return kpis


def build_collectors(
    endpoints: dict[str, str],
    timeout: float = 10.0,
    failure_threshold: int = 5,
    recovery_timeout: float = 30.0,
) -> list[HttpDomainCollector]:
    """One collector per configured domain endpoint."""
    return [
        HttpDomainCollector(
            domain=domain,
            url=url,
            timeout=timeout,
            breaker=CircuitBreaker(
                name=domain,
                failure_threshold=failure_threshold,
                recovery_timeout=recovery_timeout,
            ),
        )
        for domain, url in endpoints.items()
    ]


def collect_all(sources: list[DomainKPISource]) -> list[DomainKPI]:
    """Gather KPIs from every source; unavailable domains contribute nothing."""
    kpis: list[DomainKPI] = []
    for source in sources:
        kpis.extend(source.fetch_kpis())
    return kpis
