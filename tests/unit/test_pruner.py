"""
Unit tests for retention pruning.
"""

from datetime import datetime, timedelta

import pytest

from dashcore.engine.pruner import RetentionPruner
from dashcore.exceptions import DataSourceUnavailable
from dashcore.models.enums import TimeGranularity
from tests.conftest import make_metric

NOW = datetime(2025, 6, 1)


def seed_month(storage, start: datetime):
    storage.upsert(
        make_metric(
            window_start=start,
            window_end=start + timedelta(days=30),
            granularity=TimeGranularity.MONTH,
        )
    )


class TestRetentionPruner:
    """Cutoff semantics and result reporting."""

    def test_only_fully_expired_rows_deleted(self, mock_storage):
        pruner = RetentionPruner(mock_storage)
        cutoff = pruner.cutoff_for(NOW)
        seed_month(mock_storage, NOW - timedelta(days=730))
        seed_month(mock_storage, cutoff - timedelta(days=10))
        seed_month(mock_storage, NOW - timedelta(days=240))
        seed_month(mock_storage, NOW - timedelta(days=30))

        result = pruner.prune_expired(NOW)

        assert result.deleted == 1
        assert result.cutoff == NOW - timedelta(days=365)
        assert len(mock_storage.metrics) == 3

    def test_row_ending_at_cutoff_kept(self, mock_storage):
        cutoff = datetime(2024, 1, 1)
        mock_storage.upsert(make_metric(window_start=cutoff - timedelta(hours=1), window_end=cutoff))

        assert RetentionPruner(mock_storage).prune(cutoff) == 0

    def test_nothing_to_prune(self, mock_storage):
        assert RetentionPruner(mock_storage).prune(NOW) == 0

    def test_store_failure_propagates(self, mock_storage):
        mock_storage.fail_writes = True
        with pytest.raises(DataSourceUnavailable):
            RetentionPruner(mock_storage).prune(NOW)

    def test_retention_must_be_positive(self, mock_storage):
        with pytest.raises(ValueError):
            RetentionPruner(mock_storage, retention=timedelta(0))

    def test_custom_retention(self, mock_storage):
        pruner = RetentionPruner(mock_storage, retention=timedelta(days=30))
        assert pruner.cutoff_for(NOW) == datetime(2025, 5, 2)
