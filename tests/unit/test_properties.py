"""
Property-based tests using Hypothesis for the Zenith real-time pipeline.

These tests check invariants of the metric formulas, the bounded stores and
threshold evaluation across generated inputs.
"""

from datetime import datetime, timedelta

import hypothesis.strategies as st
import pytest
from hypothesis import given, settings
from pydantic import ValidationError

from zenith.connectors.stripe_client import (
    WebhookVerificationError,
    compute_signature,
    verify_signature,
)
from zenith.engine.realtime import AlertStore, EventPublisher, MetricsHistory, evaluate_threshold
from zenith.engine.realtime.sources import (
    build_growth_series,
    compute_avg_session_duration,
    compute_bounce_rate,
    compute_change_percent,
    generate_time_intervals,
)
from zenith.models.enums import ThresholdOperator
from tests.conftest import make_alert, make_snapshot, make_threshold


BASE_TIME = datetime(2026, 10, 19, 0, 0)

finite_floats = st.floats(
    min_value=-1e6, max_value=1e6, allow_nan=False, allow_infinity=False
)


# =============================================================================
# Metric Formula Properties
# =============================================================================


@given(data=st.data(), total=st.integers(min_value=0, max_value=100_000))
@settings(max_examples=100)
def test_prop_bounce_rate_bounds(data, total: int):
    """
    Bounce rate is a percentage for any session counts.

    Property: 0 <= bounced <= total  =>  0 <= bounce_rate <= 100
    """
    bounced = data.draw(st.integers(min_value=0, max_value=total))

    rate = compute_bounce_rate(total, bounced)

    assert 0.0 <= rate <= 100.0
    if total == 0:
        assert rate == 0.0


@given(
    durations=st.lists(
        st.one_of(st.none(), st.floats(min_value=0, max_value=86_400, allow_nan=False)),
        max_size=50,
    )
)
@settings(max_examples=100)
def test_prop_avg_duration_within_known_range(durations):
    """
    Mean session duration lies between the shortest and longest known duration.

    Property: unknown durations never affect the result
    """
    known = [d for d in durations if d is not None]

    avg = compute_avg_session_duration(durations)

    if not known:
        assert avg == 0.0
    else:
        assert min(known) - 1e-6 <= avg <= max(known) + 1e-6
        assert avg == compute_avg_session_duration(known)


@given(
    current=st.integers(min_value=0, max_value=1000),
    previous=st.integers(min_value=1, max_value=1000),
)
@settings(max_examples=100)
def test_prop_change_percent_direction(current: int, previous: int):
    """
    Change percent follows the direction of the change.

    Property: sign(change_percent) == sign(current - previous)
    """
    change = compute_change_percent(current, previous)

    assert (change > 0) == (current > previous)
    assert (change < 0) == (current < previous)
    assert change >= -100.0


@given(values=st.lists(st.integers(min_value=0, max_value=10_000), min_size=1, max_size=48))
@settings(max_examples=100)
def test_prop_growth_deltas_telescope(values):
    """
    Growth deltas sum to the overall change across the series.

    Property: sum(delta) == last.value - first.value, first delta == 0
    """
    series = build_growth_series(
        [(BASE_TIME + timedelta(hours=i), float(v)) for i, v in enumerate(values)]
    )

    assert len(series) == len(values)
    assert series[0].delta == 0.0
    assert sum(p.delta for p in series) == pytest.approx(values[-1] - values[0])


@given(
    span_minutes=st.integers(min_value=1, max_value=3 * 24 * 60),
    bucket_minutes=st.integers(min_value=1, max_value=240),
)
@settings(max_examples=100)
def test_prop_time_intervals_partition_window(span_minutes: int, bucket_minutes: int):
    """
    Buckets are contiguous, non-empty and cover the window exactly.

    Property: first.start == start, last.end == end, each end == next start
    """
    end = BASE_TIME + timedelta(minutes=span_minutes)

    intervals = generate_time_intervals(BASE_TIME, end, bucket_minutes)

    assert intervals[0][0] == BASE_TIME
    assert intervals[-1][1] == end
    for (_, bucket_end), (next_start, _) in zip(intervals, intervals[1:]):
        assert bucket_end == next_start
    assert all(s < e <= s + timedelta(minutes=bucket_minutes) for s, e in intervals)


# =============================================================================
# Threshold Properties
# =============================================================================


@given(value=finite_floats, bound=finite_floats)
@settings(max_examples=200)
def test_prop_operator_semantics(value: float, bound: float):
    """
    Operators are strict comparisons and complementary where expected.

    Property: exactly one of gt, lt, eq holds; ne == not eq
    """
    results = {
        op: evaluate_threshold(value, make_threshold(operator=op, value=bound))
        for op in ThresholdOperator
    }

    assert results[ThresholdOperator.GT] == (value > bound)
    assert results[ThresholdOperator.LT] == (value < bound)
    assert sum(results[op] for op in (ThresholdOperator.GT, ThresholdOperator.LT, ThresholdOperator.EQ)) == 1
    assert results[ThresholdOperator.NE] == (not results[ThresholdOperator.EQ])


@given(bounce_rate=st.floats(min_value=100.0, max_value=1e6, exclude_min=True, allow_nan=False))
@settings(max_examples=50)
def test_prop_snapshot_rejects_bounce_rate_over_100(bounce_rate: float):
    """
    Snapshots cannot carry a bounce rate above 100 percent.
    """
    with pytest.raises(ValidationError):
        make_snapshot(bounce_rate=bounce_rate)


# =============================================================================
# Bounded Store Properties
# =============================================================================


@given(
    max_size=st.integers(min_value=1, max_value=50),
    count=st.integers(min_value=0, max_value=150),
)
@settings(max_examples=100)
def test_prop_history_bounded(max_size: int, count: int):
    """
    History length never exceeds its cap and keeps the newest snapshots.

    Property: len == min(count, max_size), latest is the last appended
    """
    history = MetricsHistory(max_size=max_size)
    for i in range(count):
        history.append(make_snapshot(timestamp=BASE_TIME + timedelta(seconds=i)))

    assert len(history) == min(count, max_size)
    if count:
        assert history.latest().timestamp == BASE_TIME + timedelta(seconds=count - 1)
        timestamps = [s.timestamp for s in history.recent(max_size)]
        assert timestamps == sorted(timestamps)


@given(
    max_size=st.integers(min_value=1, max_value=20),
    acknowledge=st.lists(st.booleans(), min_size=1, max_size=60),
)
@settings(max_examples=100)
def test_prop_alert_store_bounded(max_size: int, acknowledge):
    """
    The alert store never holds more than its cap.

    Property: the newest alert always survives eviction
    """
    store = AlertStore(publisher=EventPublisher(), max_size=max_size)
    for ack in acknowledge:
        alert = make_alert()
        store.add(alert)
        assert store.get(alert.id) is alert
        if ack:
            store.acknowledge_alert(alert.id)
        assert len(store) <= max_size


# =============================================================================
# Signature Properties
# =============================================================================


@given(body=st.text(max_size=500), suffix=st.text(min_size=1, max_size=5))
@settings(max_examples=100)
def test_prop_signature_binds_body(body: str, suffix: str):
    """
    A signature verifies only the exact body it was computed over.
    """
    now = 1_760_000_000
    header = f"t={now},v1={compute_signature(body, now, 'whsec_prop')}"

    verify_signature(body, header, "whsec_prop", now=now)
    with pytest.raises(WebhookVerificationError):
        verify_signature(body + suffix, header, "whsec_prop", now=now)
