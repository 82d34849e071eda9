"""
Property-based tests using Hypothesis for dashcore.

These tests verify invariants of the bucketer, the rate computation and
KPI status evaluation across generated inputs.
"""

from datetime import datetime, timedelta

import hypothesis.strategies as st
from hypothesis import assume, given, settings

from dashcore.engine.aggregator import safe_rate
from dashcore.engine.bucketer import generate_windows
from dashcore.engine.kpi_evaluator import compute_change_percentage, evaluate_status, evaluate_trend
from dashcore.models.enums import KPIStatus, TimeGranularity, TrendDirection
from tests.conftest import make_thresholds

STATUS_RANK = {
    KPIStatus.CRITICAL: 0,
    KPIStatus.WARNING: 1,
    KPIStatus.GOOD: 2,
    KPIStatus.EXCELLENT: 3,
}

instants = st.datetimes(min_value=datetime(2000, 1, 1), max_value=datetime(2030, 1, 1))
finite = st.floats(min_value=-1e6, max_value=1e6, allow_nan=False, allow_infinity=False)


# =============================================================================
# Bucketer Property Tests
# =============================================================================


@given(
    start=instants,
    span=st.timedeltas(min_value=timedelta(0), max_value=timedelta(days=120)),
    granularity=st.sampled_from(
        [
            TimeGranularity.MINUTE,
            TimeGranularity.HOUR,
            TimeGranularity.DAY,
            TimeGranularity.WEEK,
            TimeGranularity.MONTH,
            TimeGranularity.QUARTER,
            TimeGranularity.YEAR,
        ]
    ),
)
@settings(max_examples=100, deadline=None)
def test_prop_windows_partition_range(start, span, granularity):
    """
    Windows are contiguous, non-overlapping and cover exactly [start, end].
    """
    assume(granularity != TimeGranularity.MINUTE or span <= timedelta(days=2))
    end = start + span
    windows = list(generate_windows(start, end, granularity))

    assert windows[0].start == start
    assert windows[-1].end == end
    for previous, current in zip(windows, windows[1:]):
        assert previous.end == current.start
    for window in windows:
        assert window.start <= window.end
        if span > timedelta(0):
            assert window.start < window.end


@given(
    start=instants,
    step_minutes=st.integers(min_value=1, max_value=720),
    steps=st.integers(min_value=1, max_value=50),
)
@settings(max_examples=100)
def test_prop_custom_step_window_count(start, step_minutes, steps):
    """An exact multiple of a custom step yields exactly that many windows."""
    step = timedelta(minutes=step_minutes)
    windows = generate_windows(start, start + step * steps, TimeGranularity.CUSTOM, step=step)
    assert len(windows) == steps


# =============================================================================
# Rate Property Tests
# =============================================================================


@given(
    numerator=st.integers(min_value=0, max_value=10**6),
    denominator=st.integers(min_value=0, max_value=10**6),
)
@settings(max_examples=100)
def test_prop_rate_is_finite(numerator, denominator):
    """Rates never divide by zero and are non-negative."""
    rate = safe_rate(numerator, denominator)
    assert rate >= 0
    if denominator == 0:
        assert rate == 0
    else:
        assert rate == numerator / denominator


# =============================================================================
# KPI Status Property Tests
# =============================================================================


@given(cuts=st.lists(finite, min_size=4, max_size=4), low=finite, high=finite)
@settings(max_examples=100)
def test_prop_status_monotone_higher_is_better(cuts, low, high):
    """With higher-is-better a larger value never has a worse status."""
    assume(low <= high)
    excellent, good, warning, critical = sorted(cuts, reverse=True)
    thresholds = make_thresholds(excellent, good, warning, critical)

    assert STATUS_RANK[evaluate_status(low, thresholds)] <= STATUS_RANK[
        evaluate_status(high, thresholds)
    ]


@given(cuts=st.lists(finite, min_size=4, max_size=4), low=finite, high=finite)
@settings(max_examples=100)
def test_prop_status_monotone_lower_is_better(cuts, low, high):
    """With lower-is-better a smaller value never has a worse status."""
    assume(low <= high)
    excellent, good, warning, critical = sorted(cuts)
    thresholds = make_thresholds(excellent, good, warning, critical, higher_is_better=False)

    assert STATUS_RANK[evaluate_status(low, thresholds)] >= STATUS_RANK[
        evaluate_status(high, thresholds)
    ]


@given(cuts=st.lists(finite, min_size=4, max_size=4), value=finite)
@settings(max_examples=100)
def test_prop_direction_inversion(cuts, value):
    """Negating values and cut points and flipping direction preserves status."""
    excellent, good, warning, critical = sorted(cuts, reverse=True)
    higher = make_thresholds(excellent, good, warning, critical)
    lower = make_thresholds(-excellent, -good, -warning, -critical, higher_is_better=False)

    assert evaluate_status(value, higher) == evaluate_status(-value, lower)


@given(value=finite)
@settings(max_examples=100)
def test_prop_status_never_unknown_with_thresholds(value):
    assert evaluate_status(value, make_thresholds()) != KPIStatus.UNKNOWN


# =============================================================================
# Trend Property Tests
# =============================================================================


@given(current=finite, previous=finite)
@settings(max_examples=100)
def test_prop_trend_follows_change_sign(current, previous):
    """The trend of a period-over-period change follows the sign of the difference."""
    change = compute_change_percentage(current, previous)
    trend = evaluate_trend(change)

    if change is None or current == previous:
        assert trend == TrendDirection.STABLE
    elif current > previous:
        assert trend == TrendDirection.INCREASING
    else:
        assert trend == TrendDirection.DECREASING
