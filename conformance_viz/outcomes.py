from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

import numpy as np

from .binning import Bucket, bucket_bounds
from .config import VizConfig
from .logging_config import get_logger
from .trace_store import PayloadFormatError, Trace, coerce_score

LOGGER = get_logger("outcomes")
DEFAULT_OUTCOME_LABEL = "desired outcome"


class MatchingMode(str, Enum):
    END = "end"
    CONTAINS = "contains"

    @classmethod
    def parse(cls, value: Any) -> "MatchingMode":
        if isinstance(value, MatchingMode):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as exc:
            raise ValueError(f"Unsupported matching mode: {value!r}. Use 'end' or 'contains'") from exc


@dataclass(frozen=True)
class OutcomeBubble:
    index: int
    lo: float
    hi: float
    x: float
    y: float
    radius: float
    count: int
    is_last: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "range": [self.lo, self.hi],
            "x": self.x,
            "y": self.y,
            "r": self.radius,
            "count": self.count,
        }


def classify_outcomes(
    traces: Iterable[Trace], desired_outcomes: Iterable[str], mode: MatchingMode | str = MatchingMode.END
) -> Dict[str, bool]:
    """
    Flag each trace as reaching the desired outcome or not.

    `end` only looks at the last activity, `contains` at any activity.
    """
    matching_mode = MatchingMode.parse(mode)
    desired = {str(label) for label in desired_outcomes}
    result: Dict[str, bool] = {}
    for trace in traces:
        if not trace.sequence:
            result[trace.trace_id] = False
        elif matching_mode is MatchingMode.END:
            result[trace.trace_id] = trace.sequence[-1] in desired
        else:
            result[trace.trace_id] = any(step in desired for step in trace.sequence)
    return result


def _radii(counts: Sequence[int], min_radius: float, radius_scale: float) -> np.ndarray:
    values = np.asarray(counts, dtype=float)
    max_count = max(float(values.max()) if values.size else 0.0, 1.0)
    radii = min_radius + (values / max_count) * radius_scale
    return np.clip(radii, min_radius, min_radius + radius_scale)


def _percentage(positive: int, total: int) -> float:
    if total <= 0:
        return 0.0
    return float(min(max(100.0 * positive / total, 0.0), 100.0))


def build_outcome_buckets(
    buckets: Sequence[Bucket],
    outcome_of: Mapping[str, bool],
    config: Optional[VizConfig] = None,
) -> List[OutcomeBubble]:
    """
    Turn conformance buckets into one outcome bubble per bucket.

    y is the share of member traces whose outcome is True; radius grows
    linearly with the trace count relative to the largest bucket.
    """
    config = config or VizConfig()
    radii = _radii([bucket.trace_count for bucket in buckets], config.min_radius, config.radius_scale)

    bubbles = []
    for bucket, radius in zip(buckets, radii):
        positive = sum(1 for trace in bucket.traces if outcome_of.get(trace.trace_id) is True)
        bubbles.append(
            OutcomeBubble(
                index=bucket.index,
                lo=bucket.lo,
                hi=bucket.hi,
                x=bucket.midpoint,
                y=_percentage(positive, bucket.trace_count),
                radius=float(radius),
                count=bucket.trace_count,
                is_last=bucket.is_last,
            )
        )
    return bubbles


def bubbles_from_payload(outcome_bins: Any, config: Optional[VizConfig] = None) -> List[OutcomeBubble]:
    """
    Build bubbles from the backend's outcome distribution bins.

    Each bin carries `range`, a trace count (`count` or `traceCount`) and
    `percentageEndingCorrectly`. Bins without a range are laid out uniformly.
    """
    if not isinstance(outcome_bins, list):
        raise PayloadFormatError("The outcome distribution payload must be a JSON array")
    config = config or VizConfig()
    default_bounds = bucket_bounds(len(outcome_bins)) if outcome_bins else []

    counts: List[int] = []
    ranges = []
    percentages = []
    for idx, raw in enumerate(outcome_bins):
        if not isinstance(raw, dict):
            raise PayloadFormatError(f"Entry {idx} of the outcome distribution payload is not an object")
        bounds = raw.get("range")
        if isinstance(bounds, (list, tuple)) and len(bounds) == 2:
            lo, hi = coerce_score(bounds[0]), coerce_score(bounds[1])
        else:
            lo, hi = None, None
        if lo is None or hi is None:
            lo, hi = default_bounds[idx]
        ranges.append((lo, hi))

        count = coerce_score(raw.get("count", raw.get("traceCount")))
        counts.append(int(count) if count is not None and count > 0 else 0)

        percentage = coerce_score(raw.get("percentageEndingCorrectly"))
        if percentage is None:
            LOGGER.warning("Outcome bin %s has no usable percentage; showing 0.", idx)
            percentage = 0.0
        percentages.append(float(min(max(percentage, 0.0), 100.0)) if counts[-1] else 0.0)

    radii = _radii(counts, config.min_radius, config.radius_scale)
    return [
        OutcomeBubble(
            index=idx,
            lo=lo,
            hi=hi,
            x=(lo + hi) / 2,
            y=y,
            radius=float(radius),
            count=count,
            is_last=idx == len(outcome_bins) - 1,
        )
        for idx, ((lo, hi), y, radius, count) in enumerate(zip(ranges, percentages, radii, counts))
    ]


def outcome_axis_label(mode: MatchingMode | str, desired_outcomes: Sequence[str] = ()) -> str:
    target = desired_outcomes[0] if desired_outcomes else DEFAULT_OUTCOME_LABEL
    if MatchingMode.parse(mode) is MatchingMode.CONTAINS:
        return f"Percentage of Traces Containing {target}"
    return f"Percentage of Traces Ending with {target}"


def bubble_tooltip(bubble: OutcomeBubble, mode: MatchingMode | str, desired_outcomes: Sequence[str] = ()) -> str:
    target = desired_outcomes[0] if desired_outcomes else DEFAULT_OUTCOME_LABEL
    verb = "containing" if MatchingMode.parse(mode) is MatchingMode.CONTAINS else "ended with"
    return f"Conformance: {bubble.x:.2f}, {bubble.y:.2f}% {verb} {target}, {bubble.count} traces"
