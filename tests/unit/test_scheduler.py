"""
Unit tests for cadences and the job scheduler.
"""

from datetime import datetime, timedelta

import pytest

from dashcore.engine.aggregator import Aggregator
from dashcore.engine.pruner import RetentionPruner
from dashcore.engine.scheduler import (
    DAILY,
    HOURLY,
    MONTHLY,
    PRUNE_DAILY,
    QUARTERLY,
    WEEKLY,
    Cadence,
    ScheduledJob,
    Scheduler,
    aggregation_job,
    build_default_jobs,
)
from dashcore.models.enums import EventType, TimeGranularity
from tests.conftest import make_events, make_metric


class TestCadence:
    """Calendar-aligned fire times."""

    @pytest.mark.parametrize(
        "cadence,after,expected",
        [
            (HOURLY, datetime(2024, 5, 15, 13, 5), datetime(2024, 5, 15, 13, 10)),
            (HOURLY, datetime(2024, 5, 15, 13, 10), datetime(2024, 5, 15, 14, 10)),
            (HOURLY, datetime(2024, 5, 15, 23, 30), datetime(2024, 5, 16, 0, 10)),
            (DAILY, datetime(2024, 5, 15, 13, 0), datetime(2024, 5, 16, 0, 20)),
            (WEEKLY, datetime(2024, 5, 15, 13, 0), datetime(2024, 5, 20, 0, 30)),
            (MONTHLY, datetime(2024, 5, 15, 13, 0), datetime(2024, 6, 1, 0, 40)),
            (QUARTERLY, datetime(2024, 5, 15, 13, 0), datetime(2024, 7, 1, 0, 50)),
            (QUARTERLY, datetime(2024, 11, 2), datetime(2025, 1, 1, 0, 50)),
            (PRUNE_DAILY, datetime(2024, 5, 15, 1, 59), datetime(2024, 5, 15, 2, 0)),
        ],
    )
    def test_next_fire(self, cadence, after, expected):
        assert cadence.next_fire(after) == expected

    def test_impossible_cadence(self):
        with pytest.raises(ValueError):
            Cadence(day=31, months=(2,)).next_fire(datetime(2024, 1, 1))


class TestScheduler:
    """Manual triggers, overlap protection and failure handling."""

    def test_run_now_invokes_callback(self):
        calls = []
        job = ScheduledJob("nightly", HOURLY, lambda fire, cancel: calls.append(fire))
        scheduler = Scheduler([job])

        assert scheduler.run_now("nightly", datetime(2024, 1, 1, 5, 10)) is True
        assert calls == [datetime(2024, 1, 1, 5, 10)]
        assert job.run_count == 1
        assert job.last_run is not None

    def test_overlapping_run_skipped(self):
        job = ScheduledJob("nightly", HOURLY, lambda fire, cancel: None)
        scheduler = Scheduler([job])

        job.lock.acquire()
        try:
            assert scheduler.run_now("nightly") is False
        finally:
            job.lock.release()

        assert job.skipped_count == 1
        assert job.run_count == 0

    def test_failure_recorded_not_raised(self):
        def boom(fire, cancel):
            raise RuntimeError("store offline")

        job = ScheduledJob("nightly", HOURLY, boom)
        scheduler = Scheduler([job])

        assert scheduler.run_now("nightly") is True
        assert job.error_count == 1
        assert job.last_error == "store offline"
        assert not job.lock.locked()

    def test_unknown_job(self):
        with pytest.raises(KeyError):
            Scheduler([]).run_now("missing")

    def test_duplicate_names_rejected(self):
        job = ScheduledJob("nightly", HOURLY, lambda fire, cancel: None)
        with pytest.raises(ValueError):
            Scheduler([job, ScheduledJob("nightly", DAILY, lambda fire, cancel: None)])

    def test_start_and_stop(self):
        clock = lambda: datetime(2024, 1, 1, 0, 0)
        job = ScheduledJob("nightly", HOURLY, lambda fire, cancel: None)
        scheduler = Scheduler([job], clock=clock, poll_seconds=0.01)

        scheduler.start()
        assert scheduler.is_running
        scheduler.stop(timeout=2.0)

        assert not scheduler.is_running
        assert scheduler.cancel_event.is_set()
        assert scheduler.status()["jobs"][0]["name"] == "nightly"

    def test_cancel_event_passed_to_callback(self):
        seen = []
        job = ScheduledJob("nightly", HOURLY, lambda fire, cancel: seen.append(cancel))
        scheduler = Scheduler([job])
        scheduler.run_now("nightly")
        assert seen == [scheduler.cancel_event]


class TestJobs:
    """Standard job wiring."""

    def test_hourly_job_aggregates_previous_hour(self, mock_storage):
        mock_storage.write_events(make_events(4, EventType.PAGE_VIEW, start=datetime(2024, 5, 15, 12, 0)))
        aggregator = Aggregator(mock_storage, mock_storage)
        job = aggregation_job("hourly", HOURLY, TimeGranularity.HOUR, aggregator)

        Scheduler([job]).run_now("hourly", datetime(2024, 5, 15, 13, 10))

        windows = {(m.window_start, m.window_end) for m in mock_storage.metrics.values()}
        assert windows == {(datetime(2024, 5, 15, 12), datetime(2024, 5, 15, 13))}
        assert aggregator.time_series("page_views", datetime(2024, 5, 15), datetime(2024, 5, 16), TimeGranularity.HOUR)["overall"][0][1] == 4

    def test_prune_job_uses_fire_time(self, mock_storage):
        mock_storage.upsert(make_metric(window_start=datetime(2022, 1, 1), window_end=datetime(2022, 1, 2)))
        jobs = build_default_jobs(Aggregator(mock_storage, mock_storage), RetentionPruner(mock_storage))

        Scheduler(jobs).run_now("prune", datetime(2024, 1, 1, 2, 0))

        assert mock_storage.metrics == {}

    def test_default_job_names(self, mock_storage):
        jobs = build_default_jobs(Aggregator(mock_storage, mock_storage), RetentionPruner(mock_storage))
        assert [j.name for j in jobs] == ["hourly", "daily", "weekly", "monthly", "quarterly", "prune"]

    def test_run_loop_fires_due_job(self):
        fired = []
        now = [datetime(2024, 1, 1, 0, 9, 59)]
        job = ScheduledJob("nightly", HOURLY, lambda fire, cancel: fired.append(fire))
        scheduler = Scheduler([job], clock=lambda: now[0], poll_seconds=0.01)

        scheduler.start()
        deadline = datetime.now() + timedelta(seconds=2)
        while job.next_fire is None and datetime.now() < deadline:
            scheduler.cancel_event.wait(0.01)
        now[0] = datetime(2024, 1, 1, 0, 10, 30)
        while not fired and datetime.now() < deadline:
            scheduler.cancel_event.wait(0.01)
        scheduler.stop(timeout=2.0)

        assert fired[0] == datetime(2024, 1, 1, 0, 10)
