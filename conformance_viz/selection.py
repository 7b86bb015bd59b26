from __future__ import annotations

import re
from dataclasses import dataclass, replace
from enum import Enum
from typing import Iterable, List, Optional, Sequence, Tuple

from .binning import Bucket, bucket_bounds, bucket_index
from .outcomes import OutcomeBubble
from .sequences import SequenceGroup, SequenceIndex
from .trace_store import Trace, TraceStore

_SELECTION_ENTRY = re.compile(r"^(?:trace\s*)?\+?(\d+)$", re.IGNORECASE)


class ViewMode(str, Enum):
    AGGREGATED = "aggregated"
    ENUMERATED = "enumerated"


@dataclass(frozen=True)
class FilterState:
    """Slider threshold plus the explicit trace selection typed by the user."""

    threshold: float = 0.0
    selected: Tuple[int, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "threshold", min(max(float(self.threshold), 0.0), 1.0))
        object.__setattr__(self, "selected", tuple(self.selected))

    def with_threshold(self, threshold: float) -> "FilterState":
        return replace(self, threshold=threshold)

    def with_selection(self, selected: Iterable[int]) -> "FilterState":
        return replace(self, selected=tuple(selected))

    def reset(self) -> "FilterState":
        return FilterState()


@dataclass(frozen=True)
class ConformanceView:
    mode: ViewMode
    state: FilterState
    buckets: Tuple[Bucket, ...] = ()
    traces: Tuple[Trace, ...] = ()
    bucket_count: int = 0

    @property
    def labels(self) -> List[str]:
        if self.mode is ViewMode.ENUMERATED:
            return [trace.trace_id for trace in self.traces]
        return [bucket.label for bucket in self.buckets]

    @property
    def is_empty(self) -> bool:
        if self.mode is ViewMode.ENUMERATED:
            return not self.traces
        return not any(bucket.trace_count for bucket in self.buckets)


@dataclass(frozen=True)
class ClickTarget:
    label: str
    groups: Tuple[SequenceGroup, ...] = ()

    @property
    def sequences(self) -> List[Tuple[str, ...]]:
        return [group.sequence for group in self.groups]


def filter_by_threshold(buckets: Sequence[Bucket], threshold: float) -> List[Bucket]:
    """
    Keep the buckets with any part of their range at or above `threshold`.

    A bucket straddling the threshold stays visible. The closed last bucket is
    kept when the threshold sits exactly on its upper edge.
    """
    return [bucket for bucket in buckets if _reaches_threshold(bucket.hi, bucket.is_last, threshold)]


def filter_bubbles_by_threshold(bubbles: Sequence[OutcomeBubble], threshold: float) -> List[OutcomeBubble]:
    return [bubble for bubble in bubbles if _reaches_threshold(bubble.hi, bubble.is_last, threshold)]


def _reaches_threshold(hi: float, is_last: bool, threshold: float) -> bool:
    return hi > threshold or (is_last and hi >= threshold)


def filter_traces_by_threshold(traces: Iterable[Trace], threshold: float) -> List[Trace]:
    return [trace for trace in traces if trace.conformance >= threshold]


def parse_trace_selection(text: str, trace_count: Optional[int] = None) -> List[int]:
    """
    Parse comma separated 1-based trace numbers such as `"1, 3, abc, 2"`.

    Unparseable and out-of-range entries are dropped; order and duplicates are kept.
    """
    numbers: List[int] = []
    for chunk in (text or "").split(","):
        match = _SELECTION_ENTRY.match(chunk.strip())
        if not match:
            continue
        number = int(match.group(1))
        if number < 1 or (trace_count is not None and number > trace_count):
            continue
        numbers.append(number)
    return numbers


def select_traces(traces: Sequence[Trace], ids: Sequence[int]) -> List[Trace]:
    """
    Return the traces at the given 1-based positions, in the order supplied.

    An empty id list means no explicit selection and returns every trace.
    """
    if not ids:
        return list(traces)
    by_position = {(trace.position or idx): trace for idx, trace in enumerate(traces, start=1)}
    return [by_position[number] for number in ids if number in by_position]


def view_mode(state: FilterState) -> ViewMode:
    return ViewMode.ENUMERATED if state.selected else ViewMode.AGGREGATED


def build_view(store: TraceStore, buckets: Sequence[Bucket], state: FilterState) -> ConformanceView:
    """Derive what the distribution chart shows for the current filter state."""
    mode = view_mode(state)
    if mode is ViewMode.ENUMERATED:
        selected = select_traces(store.traces, state.selected)
        return ConformanceView(
            mode=mode,
            state=state,
            traces=tuple(filter_traces_by_threshold(selected, state.threshold)),
            bucket_count=len(buckets),
        )
    return ConformanceView(
        mode=mode,
        state=state,
        buckets=tuple(filter_by_threshold(buckets, state.threshold)),
        bucket_count=len(buckets),
    )


def resolve_click_target(view: ConformanceView, index: int, sequences: SequenceIndex) -> Optional[ClickTarget]:
    """
    Map a click on bar `index` of `view` to the activity sequences behind it.

    Returns None when the index does not point at a visible bar.
    """
    if view.mode is ViewMode.ENUMERATED:
        if not 0 <= index < len(view.traces):
            return None
        trace = view.traces[index]
        sequence = sequences.sequence_for_trace(trace.trace_id) or trace.sequence
        groups = (SequenceGroup(sequence=tuple(sequence), count=1),) if sequence else ()
        if view.bucket_count:
            lo, hi = bucket_bounds(view.bucket_count)[bucket_index(trace.conformance, view.bucket_count)]
            label = f"{trace.trace_id} (Bin {lo:.1f}–{hi:.1f})"
        else:
            label = trace.trace_id
        return ClickTarget(label=label, groups=groups)

    if not 0 <= index < len(view.buckets):
        return None
    bucket = view.buckets[index]
    return ClickTarget(label=bucket.label, groups=tuple(sequences.groups_for_bucket(bucket.index)))


def empty_state_message(view: ConformanceView) -> Optional[str]:
    if not view.is_empty:
        return None
    if view.mode is ViewMode.ENUMERATED:
        return (
            f"No selected traces reach a conformance of {view.state.threshold:.2f}. "
            "Check the trace numbers or lower the threshold."
        )
    return f"No traces with a conformance of {view.state.threshold:.2f} or higher."
