from __future__ import annotations

import math
import statistics
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Sequence, Tuple

import pandas as pd

from .config import DEFAULT_BUCKET_COUNT
from .logging_config import get_logger
from .trace_store import PayloadFormatError, Trace, coerce_score

LOGGER = get_logger("binning")


@dataclass(frozen=True)
class Bucket:
    """
    Fixed-width slice `[lo, hi)` of the conformance range.

    The last bucket is closed on both ends so that a score of exactly 1.0 has a home.
    """

    index: int
    lo: float
    hi: float
    traces: Tuple[Trace, ...] = ()
    trace_count: int = 0
    average_conformance: float = 0.0
    is_last: bool = False

    @property
    def midpoint(self) -> float:
        return (self.lo + self.hi) / 2

    @property
    def label(self) -> str:
        return f"{self.lo:.1f}–{self.hi:.1f}"

    def contains(self, score: float) -> bool:
        if self.is_last:
            return self.lo <= score <= self.hi
        return self.lo <= score < self.hi


def bucket_bounds(bucket_count: int) -> List[Tuple[float, float]]:
    _check_bucket_count(bucket_count)
    # Edges are computed from the index rather than accumulated so the last edge is exactly 1.0.
    return [(idx / bucket_count, (idx + 1) / bucket_count) for idx in range(bucket_count)]


def bucket_index(score: float, bucket_count: int = DEFAULT_BUCKET_COUNT) -> int:
    """
    Return the bucket a score falls into.

    Scores outside [0, 1] are clamped into the first or last bucket.
    """
    _check_bucket_count(bucket_count)
    score = min(max(score, 0.0), 1.0)
    index = math.floor(score * bucket_count)
    # Nudge off-by-one float results (0.3 * 10 etc.) so the index agrees with `bucket_bounds`.
    if index + 1 <= bucket_count - 1 and score >= (index + 1) / bucket_count:
        index += 1
    elif index > 0 and score < index / bucket_count:
        index -= 1
    return min(max(index, 0), bucket_count - 1)


def compute_buckets(traces: Iterable[Trace], bucket_count: int = DEFAULT_BUCKET_COUNT) -> List[Bucket]:
    """
    Partition traces into `bucket_count` uniform conformance buckets.

    Traces whose conformance is not a finite number are excluded from every
    aggregate. Empty buckets report a zero count and a zero average.
    """
    _check_bucket_count(bucket_count)
    members: List[List[Trace]] = [[] for _ in range(bucket_count)]
    totals = [0.0] * bucket_count
    excluded = 0

    for trace in traces:
        score = coerce_score(trace.conformance)
        if score is None:
            excluded += 1
            continue
        idx = bucket_index(score, bucket_count)
        members[idx].append(trace)
        totals[idx] += score

    if excluded:
        LOGGER.warning("Excluded %s traces with unusable conformance scores from bucketing.", excluded)

    buckets = []
    for idx, (lo, hi) in enumerate(bucket_bounds(bucket_count)):
        count = len(members[idx])
        buckets.append(
            Bucket(
                index=idx,
                lo=lo,
                hi=hi,
                traces=tuple(members[idx]),
                trace_count=count,
                average_conformance=totals[idx] / count if count else 0.0,
                is_last=idx == bucket_count - 1,
            )
        )
    LOGGER.debug("Computed %s buckets over %s traces.", bucket_count, sum(b.trace_count for b in buckets))
    return buckets


def buckets_from_payload(conformance_bins: Any) -> List[Bucket]:
    """
    Build buckets from the backend's pre-aggregated `{averageConformance, traceCount}` bins.

    The bins are index-aligned with uniform buckets; member traces are not available.
    """
    if not isinstance(conformance_bins, list) or not conformance_bins:
        raise PayloadFormatError("The conformance bins payload must be a non-empty JSON array")

    bounds = bucket_bounds(len(conformance_bins))
    buckets = []
    for idx, (raw, (lo, hi)) in enumerate(zip(conformance_bins, bounds)):
        if not isinstance(raw, dict):
            raise PayloadFormatError(f"Entry {idx} of the conformance bins payload is not an object")
        count_value = coerce_score(raw.get("traceCount"))
        count = int(count_value) if count_value is not None and count_value > 0 else 0
        average = coerce_score(raw.get("averageConformance"))
        buckets.append(
            Bucket(
                index=idx,
                lo=lo,
                hi=hi,
                trace_count=count,
                average_conformance=average if average is not None and count else 0.0,
                is_last=idx == len(conformance_bins) - 1,
            )
        )
    return buckets


def buckets_to_frame(buckets: Sequence[Bucket]) -> pd.DataFrame:
    rows = [
        {
            "bucket": bucket.label,
            "lo": bucket.lo,
            "hi": bucket.hi,
            "traces": bucket.trace_count,
            "avg_conformance": round(bucket.average_conformance, 4),
        }
        for bucket in buckets
    ]
    return pd.DataFrame(rows, columns=["bucket", "lo", "hi", "traces", "avg_conformance"])


def summarize_conformance(traces: Iterable[Trace]) -> Dict[str, float]:
    scores = [score for score in (coerce_score(trace.conformance) for trace in traces) if score is not None]
    return {
        "avg_conformance": round(statistics.mean(scores), 4) if scores else 0.0,
        "min_conformance": round(min(scores), 4) if scores else 0.0,
        "max_conformance": round(max(scores), 4) if scores else 0.0,
        "traces": len(scores),
    }


def _check_bucket_count(bucket_count: int) -> None:
    if bucket_count < 1:
        raise ValueError(f"bucket_count must be >= 1, got {bucket_count}")
