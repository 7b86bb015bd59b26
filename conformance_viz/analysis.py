from __future__ import annotations

import pathlib
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .binning import Bucket, buckets_from_payload, buckets_to_frame, compute_buckets, summarize_conformance
from .config import VizConfig, color_for_value
from .logging_config import get_logger
from .outcomes import (
    MatchingMode,
    OutcomeBubble,
    bubble_tooltip,
    bubbles_from_payload,
    build_outcome_buckets,
    classify_outcomes,
    outcome_axis_label,
)
from .selection import (
    ClickTarget,
    ConformanceView,
    FilterState,
    ViewMode,
    build_view,
    empty_state_message,
    filter_bubbles_by_threshold,
    parse_trace_selection,
    resolve_click_target,
)
from .sequences import SequenceIndex, format_sequence
from .trace_store import (
    ActivityDeviations,
    PayloadFormatError,
    TraceStore,
    load_payload_file,
    parse_activity_deviations,
)

LOGGER = get_logger("analysis")

PAYLOAD_FILES = {
    "fitness": "fitness.json",
    "trace_sequences": "trace-sequences.json",
    "unique_sequences": "unique-sequences.json",
    "conformance_bins": "conformance-bins.json",
    "activity_deviations": "activity-deviations.json",
    "outcome_distribution": "outcome-distribution.json",
}


@dataclass(frozen=True)
class OutcomeSettings:
    desired_outcomes: Tuple[str, ...] = ()
    matching_mode: MatchingMode = MatchingMode.END


@dataclass(frozen=True)
class ConformanceSession:
    """
    Everything derived once from a loaded dataset.

    Views are recomputed from these immutable parts and a `FilterState` on
    every interaction; nothing here changes after construction.
    """

    store: TraceStore
    buckets: Tuple[Bucket, ...]
    sequences: SequenceIndex
    config: VizConfig = field(default_factory=VizConfig)
    outcome: OutcomeSettings = field(default_factory=OutcomeSettings)
    bubbles: Tuple[OutcomeBubble, ...] = ()
    deviations: Optional[ActivityDeviations] = None

    @classmethod
    def from_payloads(
        cls,
        fitness: Any,
        trace_sequences: Any = None,
        *,
        unique_sequences: Any = None,
        conformance_bins: Any = None,
        activity_deviations: Any = None,
        outcome_distribution: Any = None,
        desired_outcomes: Optional[Sequence[str]] = None,
        matching_mode: Optional[str] = None,
        config: Optional[VizConfig] = None,
    ) -> "ConformanceSession":
        config = config or VizConfig()
        store = TraceStore.from_payloads(fitness, trace_sequences)

        if len(store) or conformance_bins is None:
            buckets = compute_buckets(store.traces, config.bucket_count)
        else:
            buckets = buckets_from_payload(conformance_bins)

        has_sequences = any(trace.sequence for trace in store.traces)
        if unique_sequences is not None and not has_sequences:
            sequences = SequenceIndex.from_payload(unique_sequences, store)
        else:
            sequences = SequenceIndex.build(store, buckets)

        outcome, bubbles = _resolve_outcomes(
            store, buckets, config, outcome_distribution, desired_outcomes, matching_mode
        )
        deviations = parse_activity_deviations(activity_deviations) if activity_deviations is not None else None

        return cls(
            store=store,
            buckets=tuple(buckets),
            sequences=sequences,
            config=config,
            outcome=outcome,
            bubbles=tuple(bubbles),
            deviations=deviations,
        )

    @classmethod
    def from_directory(
        cls,
        directory: pathlib.Path,
        *,
        trace_sequences: Any = None,
        desired_outcomes: Optional[Sequence[str]] = None,
        matching_mode: Optional[str] = None,
        config: Optional[VizConfig] = None,
    ) -> "ConformanceSession":
        """
        Load a directory of saved backend responses (see `PAYLOAD_FILES`).

        Only `fitness.json` is required. `trace_sequences` replaces the saved
        trace-sequence payload, e.g. one derived from a local event log.
        """
        directory = pathlib.Path(directory)
        payloads: Dict[str, Any] = {}
        for key, filename in PAYLOAD_FILES.items():
            path = directory / filename
            if path.exists():
                payloads[key] = load_payload_file(path)
        if "fitness" not in payloads:
            raise PayloadFormatError(f"No {PAYLOAD_FILES['fitness']} found in {directory}")
        if trace_sequences is not None:
            payloads["trace_sequences"] = trace_sequences
        LOGGER.info("Loaded payloads from %s: %s", directory, ", ".join(sorted(payloads)))
        return cls.from_payloads(
            payloads.pop("fitness"),
            payloads.pop("trace_sequences", None),
            desired_outcomes=desired_outcomes,
            matching_mode=matching_mode,
            config=config,
            **payloads,
        )

    def select(self, state: FilterState, text: str) -> FilterState:
        """Parse typed trace numbers against this session's fitness list."""
        return state.with_selection(parse_trace_selection(text, self.store.fitness_length))

    def view(self, state: FilterState) -> ConformanceView:
        return build_view(self.store, self.buckets, state)

    def outcome_bubbles(self, state: FilterState) -> List[OutcomeBubble]:
        return filter_bubbles_by_threshold(self.bubbles, state.threshold)

    def click(self, state: FilterState, index: int) -> Optional[ClickTarget]:
        return resolve_click_target(self.view(state), index, self.sequences)

    def overview(self) -> Dict[str, Any]:
        summary = summarize_conformance(self.store.traces)
        summary["skipped"] = self.store.skipped
        summary["buckets"] = len(self.buckets)
        summary["deviation_traces"] = self.deviations.total_traces if self.deviations else None
        return summary

    def export_views(self, state: FilterState) -> Dict[str, Any]:
        """Serialise every derived view for `state` into plain JSON types."""
        view = self.view(state)
        steps = self.config.color_steps
        if view.mode is ViewMode.ENUMERATED:
            bars = [
                {"label": trace.trace_id, "value": trace.conformance, "color": color_for_value(trace.conformance, steps)}
                for trace in view.traces
            ]
        else:
            bars = [
                {
                    "label": bucket.label,
                    "value": bucket.trace_count,
                    "average_conformance": bucket.average_conformance,
                    "unique_sequences": self.sequences.unique_count(bucket.index),
                    "color": color_for_value(bucket.average_conformance, steps),
                }
                for bucket in view.buckets
            ]

        mode = self.outcome.matching_mode
        desired = list(self.outcome.desired_outcomes)
        bubbles = []
        for bubble in self.outcome_bubbles(state):
            entry = bubble.to_dict()
            entry["color"] = color_for_value(bubble.x, steps)
            entry["tooltip"] = bubble_tooltip(bubble, mode, desired)
            bubbles.append(entry)

        return {
            "mode": view.mode.value,
            "threshold": state.threshold,
            "selected": list(state.selected),
            "bars": bars,
            "empty_message": empty_state_message(view),
            "buckets": buckets_to_frame(self.buckets).to_dict(orient="records"),
            "sequences": [
                [
                    {"sequence": format_sequence(group.sequence), "count": group.count}
                    for group in self.sequences.groups_for_bucket(bucket.index)
                ]
                for bucket in self.buckets
            ],
            "outcome": {
                "axis_label": outcome_axis_label(mode, desired),
                "desired_outcomes": desired,
                "matching_mode": mode.value,
                "bubbles": bubbles,
            },
            "overview": self.overview(),
        }


def _resolve_outcomes(
    store: TraceStore,
    buckets: Sequence[Bucket],
    config: VizConfig,
    outcome_distribution: Any,
    desired_outcomes: Optional[Sequence[str]],
    matching_mode: Optional[str],
) -> Tuple[OutcomeSettings, List[OutcomeBubble]]:
    payload: Mapping[str, Any] = {}
    if outcome_distribution is not None:
        if isinstance(outcome_distribution, list):
            payload = {"bins": outcome_distribution}
        elif isinstance(outcome_distribution, Mapping):
            payload = outcome_distribution
        else:
            raise PayloadFormatError("The outcome distribution payload must be an object or a JSON array")

    mode = MatchingMode.parse(matching_mode or payload.get("matching_mode") or MatchingMode.END)

    if desired_outcomes:
        return _classify_locally(store, buckets, config, OutcomeSettings(tuple(desired_outcomes), mode))

    settings = OutcomeSettings(tuple(str(label) for label in payload.get("desiredOutcomes") or ()), mode)
    if "bins" in payload:
        return settings, bubbles_from_payload(payload["bins"], config)
    if settings.desired_outcomes:
        if any(trace.sequence for trace in store.traces):
            return _classify_locally(store, buckets, config, settings)
        LOGGER.warning(
            "Outcome payload names %s but has no bins and no sequences are loaded; every bubble is at 0%%.",
            ", ".join(settings.desired_outcomes),
        )
    return settings, build_outcome_buckets(buckets, {}, config)


def _classify_locally(
    store: TraceStore, buckets: Sequence[Bucket], config: VizConfig, settings: OutcomeSettings
) -> Tuple[OutcomeSettings, List[OutcomeBubble]]:
    outcome_of = classify_outcomes(store.traces, settings.desired_outcomes, settings.matching_mode)
    LOGGER.info(
        "Classified %s traces locally (%s %s).",
        len(outcome_of),
        settings.matching_mode.value,
        ", ".join(settings.desired_outcomes),
    )
    return settings, build_outcome_buckets(buckets, outcome_of, config)
