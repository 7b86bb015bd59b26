"""
Tests for the conformance binning engine.

Run with: pytest tests/test_binning.py -v
"""
import math

import pytest

from conformance_viz.binning import (
    bucket_bounds,
    bucket_index,
    buckets_from_payload,
    buckets_to_frame,
    compute_buckets,
    summarize_conformance,
)
from conformance_viz.trace_store import PayloadFormatError, Trace, TraceStore


def _trace(trace_id, conformance, *sequence):
    return Trace(trace_id=trace_id, conformance=conformance, sequence=tuple(sequence))


class TestComputeBuckets:
    def test_scenario_three_traces_land_in_expected_buckets(self):
        traces = [_trace("t1", 0.05), _trace("t2", 0.15), _trace("t3", 0.95)]
        buckets = compute_buckets(traces, 10)

        counts = [bucket.trace_count for bucket in buckets]
        assert counts == [1, 1, 0, 0, 0, 0, 0, 0, 0, 1]
        assert buckets[0].traces[0].trace_id == "t1"
        assert buckets[9].traces[0].trace_id == "t3"

    def test_every_trace_is_assigned_exactly_once(self):
        scores = [i / 37 for i in range(38)]
        traces = [_trace(f"t{i}", score) for i, score in enumerate(scores)]
        buckets = compute_buckets(traces, 10)

        assert sum(bucket.trace_count for bucket in buckets) == len(traces)
        members = [trace.trace_id for bucket in buckets for trace in bucket.traces]
        assert sorted(members) == sorted(trace.trace_id for trace in traces)

    def test_perfect_score_goes_to_last_bucket(self):
        buckets = compute_buckets([_trace("t1", 1.0)], 10)
        assert len(buckets) == 10
        assert buckets[-1].trace_count == 1
        assert buckets[-1].is_last

    def test_empty_input_yields_zeroed_buckets(self):
        buckets = compute_buckets([], 4)
        assert len(buckets) == 4
        for bucket in buckets:
            assert bucket.trace_count == 0
            assert bucket.average_conformance == 0
            assert not math.isnan(bucket.average_conformance)

    def test_average_is_mean_of_member_scores(self):
        buckets = compute_buckets([_trace("a", 0.42), _trace("b", 0.48), _trace("c", 0.9)], 10)
        assert buckets[4].average_conformance == pytest.approx(0.45)
        assert buckets[9].average_conformance == pytest.approx(0.9)

    def test_out_of_range_scores_are_clamped(self):
        buckets = compute_buckets([_trace("low", -0.3), _trace("high", 1.7)], 10)
        assert buckets[0].trace_count == 1
        assert buckets[9].trace_count == 1

    def test_extreme_finite_scores_are_clamped(self):
        assert bucket_index(1e308, 10) == 9
        assert bucket_index(-1e308, 10) == 0
        store = TraceStore.from_payloads(
            [{"trace": "Trace 1", "conformance": 1e308}, {"trace": "Trace 2", "conformance": -1e308}]
        )
        buckets = compute_buckets(store.traces, 10)
        assert buckets[0].trace_count == 1
        assert buckets[9].trace_count == 1

    def test_unusable_scores_are_excluded(self):
        traces = [_trace("ok", 0.5), _trace("nan", float("nan")), _trace("text", "abc")]
        buckets = compute_buckets(traces, 10)
        assert sum(bucket.trace_count for bucket in buckets) == 1
        assert buckets[5].trace_count == 1

    def test_bounds_partition_unit_interval(self):
        buckets = compute_buckets([], 10)
        assert buckets[0].lo == 0.0
        assert buckets[-1].hi == 1.0
        for left, right in zip(buckets, buckets[1:]):
            assert left.hi == right.lo

    def test_score_on_boundary_belongs_to_upper_bucket(self):
        buckets = compute_buckets([_trace("t", 0.3)], 10)
        assert buckets[3].trace_count == 1
        assert buckets[3].contains(0.3)
        assert not buckets[2].contains(0.3)

    def test_result_is_stable_for_same_input(self):
        traces = [_trace("a", 0.12), _trace("b", 0.77)]
        assert compute_buckets(traces, 5) == compute_buckets(traces, 5)

    def test_bucket_count_must_be_positive(self):
        with pytest.raises(ValueError):
            compute_buckets([], 0)


def test_bucket_index_matches_bucket_bounds():
    for count in (1, 3, 7, 10, 100):
        bounds = bucket_bounds(count)
        for step in range(0, 1001):
            score = step / 1000
            lo, hi = bounds[bucket_index(score, count)]
            assert lo <= score
            assert score < hi or hi == 1.0


def test_single_bucket_holds_everything():
    buckets = compute_buckets([_trace("a", 0.0), _trace("b", 1.0)], 1)
    assert buckets[0].trace_count == 2
    assert buckets[0].label == "0.0–1.0"


def test_buckets_from_payload_uses_pre_aggregated_values():
    payload = [
        {"averageConformance": 0.05, "traceCount": 3},
        {"averageConformance": 0.7, "traceCount": 0},
        {"averageConformance": "bad", "traceCount": 2},
    ]
    buckets = buckets_from_payload(payload)

    assert [bucket.trace_count for bucket in buckets] == [3, 0, 2]
    assert buckets[0].average_conformance == pytest.approx(0.05)
    assert buckets[1].average_conformance == 0.0
    assert buckets[2].average_conformance == 0.0
    assert buckets[2].is_last


def test_buckets_from_payload_rejects_non_list():
    with pytest.raises(PayloadFormatError):
        buckets_from_payload({"bins": []})


def test_buckets_to_frame_has_one_row_per_bucket():
    frame = buckets_to_frame(compute_buckets([_trace("a", 0.25)], 4))
    assert list(frame.columns) == ["bucket", "lo", "hi", "traces", "avg_conformance"]
    assert frame["traces"].tolist() == [0, 1, 0, 0]


def test_summarize_conformance_handles_empty_input():
    assert summarize_conformance([]) == {
        "avg_conformance": 0.0,
        "min_conformance": 0.0,
        "max_conformance": 0.0,
        "traces": 0,
    }
    summary = summarize_conformance([_trace("a", 0.2), _trace("b", 0.6)])
    assert summary["avg_conformance"] == pytest.approx(0.4)
    assert summary["max_conformance"] == pytest.approx(0.6)
