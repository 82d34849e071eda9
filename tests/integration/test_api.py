"""
Integration tests for the dashcore API.

All endpoints tested:
- System: health, scheduler status, manual job trigger
- Aggregation: run, prune, families
- Metrics: query, timeseries
- KPIs: evaluate, domain, collect, latest, attention, history
"""

from datetime import timedelta

import pytest

from dashcore.dependencies import get_collectors
from dashcore.main import app
from dashcore.models.enums import EventType
from tests.conftest import T0, make_domain_kpi, make_events, make_metric

HOUR_END = T0 + timedelta(hours=1)


@pytest.fixture(autouse=True)
def seeded_storage(real_storage):
    """Fresh app storage with one hour of funnel events."""
    real_storage.write_events(
        make_events(20, EventType.PRODUCT_VIEW, spacing=timedelta(minutes=2))
        + make_events(5, EventType.CHECKOUT_COMPLETE, spacing=timedelta(minutes=7))
    )
    return real_storage


def kpi_payload(**overrides) -> dict:
    kpi = make_domain_kpi(thresholds=None, **overrides)
    payload = kpi.model_dump(mode="json")
    payload["thresholds"] = {
        "excellent": 90,
        "good": 70,
        "warning": 50,
        "critical": 30,
        "higher_is_better": True,
    }
    return payload


class TestSystemEndpoints:
    """Health and scheduler."""

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert "X-Request-ID" in response.headers

    def test_request_id_echoed(self, client):
        response = client.get("/health", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"

    def test_system_health_reports_tables(self, client):
        data = client.get("/api/v1/system/health").json()["data"]
        assert data["database"] == "healthy"
        assert data["tables"]["raw_events"] == 25

    def test_scheduler_status(self, client):
        data = client.get("/api/v1/system/scheduler").json()["data"]
        assert data["running"] is False
        assert {job["name"] for job in data["jobs"]} >= {"hourly", "prune"}

    def test_trigger_unknown_job(self, client):
        assert client.post("/api/v1/system/scheduler/nope/run").status_code == 404

    def test_trigger_prune_job(self, client):
        response = client.post("/api/v1/system/scheduler/prune/run")
        assert response.status_code == 200
        assert response.json()["data"]["ran"] is True


class TestAggregationEndpoints:
    """Aggregation runs and pruning."""

    def test_run_and_read_back(self, client):
        response = client.post(
            "/api/v1/aggregation/run",
            json={
                "start": T0.isoformat(),
                "end": HOUR_END.isoformat(),
                "granularity": "hour",
                "families": ["ecommerce"],
            },
        )

        assert response.status_code == 200
        run = response.json()["data"]
        assert run["status"] == "completed"
        assert run["windows_processed"] == 1

        rows = client.get(
            "/api/v1/metrics/",
            params={"name": "overall_conversion_rate", "dimension": "overall"},
        ).json()
        assert rows["count"] == 1
        assert rows["data"][0]["value"] == pytest.approx(0.25)

    def test_unknown_family_is_422(self, client):
        response = client.post(
            "/api/v1/aggregation/run",
            json={"start": T0.isoformat(), "end": HOUR_END.isoformat(), "families": ["nope"]},
        )
        assert response.status_code == 422

    def test_inverted_range_is_422(self, client):
        response = client.post(
            "/api/v1/aggregation/run",
            json={"start": HOUR_END.isoformat(), "end": T0.isoformat()},
        )
        assert response.status_code == 422

    def test_mixed_aware_and_naive_range(self, client):
        response = client.post(
            "/api/v1/aggregation/run",
            json={
                "start": T0.isoformat() + "Z",
                "end": HOUR_END.isoformat(),
                "families": ["ecommerce"],
            },
        )

        assert response.status_code == 200
        assert response.json()["data"]["windows_processed"] == 1

    def test_mixed_range_inverted_is_422(self, client):
        response = client.post(
            "/api/v1/aggregation/run",
            json={"start": HOUR_END.isoformat() + "+00:00", "end": T0.isoformat()},
        )
        assert response.status_code == 422

    def test_prune_with_cutoff(self, client, seeded_storage):
        seeded_storage.upsert(make_metric(window_start=T0 - timedelta(days=800)))
        seeded_storage.upsert(make_metric(window_start=T0))

        response = client.post(
            "/api/v1/aggregation/prune", json={"cutoff": (T0 - timedelta(days=1)).isoformat()}
        )

        assert response.json()["data"]["deleted"] == 1

    def test_families(self, client):
        data = client.get("/api/v1/aggregation/families").json()["data"]
        assert set(data) == {"user_activity", "ecommerce", "fulfillment", "performance"}
        kinds = {d["kind"] for d in data["ecommerce"]}
        assert kinds == {"count", "rate"}


class TestMetricEndpoints:
    def test_timeseries(self, client):
        client.post(
            "/api/v1/aggregation/run",
            json={
                "start": T0.isoformat(),
                "end": (T0 + timedelta(hours=2)).isoformat(),
                "granularity": "hour",
                "families": ["ecommerce"],
            },
        )

        response = client.get(
            "/api/v1/metrics/timeseries",
            params={
                "name": "product_views",
                "start": T0.isoformat(),
                "end": (T0 + timedelta(hours=2)).isoformat(),
                "granularity": "hour",
            },
        )

        series = response.json()["data"]
        assert [point["value"] for point in series["overall"]] == [20, 0]


class TestKPIEndpoints:
    """KPI evaluation and reads."""

    def test_evaluate_metric_kpi(self, client):
        client.post(
            "/api/v1/aggregation/run",
            json={
                "start": T0.isoformat(),
                "end": HOUR_END.isoformat(),
                "granularity": "hour",
                "families": ["ecommerce"],
            },
        )

        response = client.post(
            "/api/v1/kpis/evaluate",
            json={
                "name": "product_views",
                "granularity": "hour",
                "as_of": (HOUR_END + timedelta(minutes=10)).isoformat(),
            },
        )

        data = response.json()["data"]
        assert response.status_code == 200
        assert data["value"] == 20
        assert data["status"] == "unknown"

    def test_custom_granularity_rejected(self, client):
        response = client.post(
            "/api/v1/kpis/evaluate", json={"name": "product_views", "granularity": "custom"}
        )
        assert response.status_code == 422

    def test_domain_kpis_evaluated_and_skipped(self, client):
        good = kpi_payload(value=75.0)
        bad = kpi_payload(value=40.0)
        bad["domain"] = None

        response = client.post("/api/v1/kpis/domain", json=[good, bad])

        body = response.json()
        assert body["skipped"] == 1
        assert body["data"][0]["status"] == "good"

    def test_domain_batch_survives_malformed_thresholds(self, client):
        good = kpi_payload(value=95.0)
        malformed = kpi_payload(name="avg_delivery_time", value=40.0)
        malformed["thresholds"] = {"excellent": 30}

        response = client.post("/api/v1/kpis/domain", json=[good, malformed])

        assert response.status_code == 200
        body = response.json()
        assert body["skipped"] == 1
        assert [k["name"] for k in body["data"]] == ["delivery_success_rate"]
        assert body["data"][0]["status"] == "excellent"

    def test_latest_attention_and_history(self, client):
        client.post("/api/v1/kpis/domain", json=[kpi_payload(value=95.0)])
        client.post("/api/v1/kpis/domain", json=[kpi_payload(value=40.0)])

        latest = client.get("/api/v1/kpis/latest").json()["data"]
        attention = client.get("/api/v1/kpis/attention").json()["data"]
        history = client.get("/api/v1/kpis/delivery_success_rate/history").json()

        assert [k["status"] for k in latest] == ["critical"]
        assert [k["name"] for k in attention] == ["delivery_success_rate"]
        assert history["count"] == 2
        assert [k["value"] for k in history["data"]] == [95.0, 40.0]

    def test_collect_from_domains(self, client):
        class StaticSource:
            domain = "courier"

            def fetch_kpis(self):
                return [make_domain_kpi(value=88.0)]

        app.dependency_overrides[get_collectors] = lambda: (StaticSource(),)
        try:
            response = client.post("/api/v1/kpis/collect")
        finally:
            app.dependency_overrides.pop(get_collectors, None)

        data = response.json()["data"]
        assert len(data) == 1
        assert data[0]["domain"] == "courier"
