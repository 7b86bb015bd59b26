import json
import pathlib
import sys

import pytest

from conformance_viz.analysis import ConformanceSession
from conformance_viz.config import VizConfig
from conformance_viz.outcomes import MatchingMode
from conformance_viz.selection import FilterState, ViewMode
from conformance_viz.trace_store import PayloadFormatError

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT / "scripts") not in sys.path:
    sys.path.insert(0, str(ROOT / "scripts"))

import export_conformance_views  # noqa: E402

FITNESS = [
    {"trace": "Trace 1", "conformance": 0.05},
    {"trace": "Trace 2", "conformance": 0.08},
    {"trace": "Trace 3", "conformance": 0.95},
    {"trace": "Trace 4", "conformance": None},
]
TRACE_SEQUENCES = [
    {"trace": "Trace 1", "sequence": ["Create", "Pay"]},
    {"trace": "Trace 2", "sequence": ["Create", "Cancel"]},
    {"trace": "Trace 3", "sequence": ["Create", "Approve", "Pay"]},
]
OUTCOME_DISTRIBUTION = {
    "bins": [{"range": [i / 10, (i + 1) / 10], "count": 1, "percentageEndingCorrectly": 10 * i} for i in range(10)],
    "desiredOutcomes": ["Pay"],
    "matching_mode": "contains",
}


def _log_config(tmp_path):
    path = tmp_path / "viz.json"
    path.write_text(json.dumps({"log_file": str(tmp_path / "export.log")}), encoding="utf-8")
    return str(path)


def _write_payloads(directory, **payloads):
    for name, payload in payloads.items():
        (directory / name).write_text(json.dumps(payload), encoding="utf-8")


def test_session_with_local_outcome_classification():
    session = ConformanceSession.from_payloads(FITNESS, TRACE_SEQUENCES, desired_outcomes=["Pay"], matching_mode="end")

    assert len(session.store) == 3
    assert session.store.skipped == 1
    assert [bucket.trace_count for bucket in session.buckets][:2] == [2, 0]
    assert session.outcome.matching_mode is MatchingMode.END
    assert session.bubbles[0].y == 50
    assert session.bubbles[9].y == 100


def test_session_prefers_backend_outcome_bins_without_override():
    session = ConformanceSession.from_payloads(FITNESS, TRACE_SEQUENCES, outcome_distribution=OUTCOME_DISTRIBUTION)

    assert session.outcome.desired_outcomes == ("Pay",)
    assert session.outcome.matching_mode is MatchingMode.CONTAINS
    assert [bubble.y for bubble in session.outcome_bubbles(FilterState(threshold=0.75))] == [70, 80, 90]


def test_session_falls_back_to_backend_bins_and_sequences():
    session = ConformanceSession.from_payloads(
        [],
        conformance_bins=[{"averageConformance": 0.2, "traceCount": 4}, {"averageConformance": 0.8, "traceCount": 1}],
        unique_sequences=[{"sequences": [["A"], ["A"]], "uniqueSequences": 1}, {"sequences": [], "uniqueSequences": 0}],
    )

    assert [bucket.trace_count for bucket in session.buckets] == [4, 1]
    assert session.sequences.unique_count(0) == 1
    target = session.click(FilterState(), 0)
    assert target.label == "0.0–0.5"
    assert target.groups[0].count == 2


def test_session_views_switch_modes():
    session = ConformanceSession.from_payloads(FITNESS, TRACE_SEQUENCES, config=VizConfig(bucket_count=5))

    aggregated = session.view(FilterState())
    enumerated = session.view(FilterState(selected=(3, 1)))

    assert aggregated.mode is ViewMode.AGGREGATED
    assert len(aggregated.buckets) == 5
    assert enumerated.mode is ViewMode.ENUMERATED
    assert enumerated.labels == ["Trace 3", "Trace 1"]
    assert session.click(FilterState(selected=(3, 1)), 1).sequences == [("Create", "Pay")]


def test_export_views_is_json_serialisable():
    session = ConformanceSession.from_payloads(
        FITNESS,
        TRACE_SEQUENCES,
        activity_deviations={"deviations": {"Pay": 1}, "total_traces": 3},
        desired_outcomes=["Pay"],
    )
    exported = session.export_views(FilterState(threshold=0.5))
    round_tripped = json.loads(json.dumps(exported))

    assert round_tripped["mode"] == "aggregated"
    assert [bar["label"] for bar in round_tripped["bars"]] == ["0.5–0.6", "0.6–0.7", "0.7–0.8", "0.8–0.9", "0.9–1.0"]
    assert round_tripped["sequences"][0] == [
        {"sequence": "Create → Pay", "count": 1},
        {"sequence": "Create → Cancel", "count": 1},
    ]
    assert round_tripped["outcome"]["axis_label"] == "Percentage of Traces Ending with Pay"
    assert round_tripped["overview"]["deviation_traces"] == 3
    assert round_tripped["overview"]["skipped"] == 1


def test_from_directory_requires_fitness(tmp_path):
    with pytest.raises(PayloadFormatError):
        ConformanceSession.from_directory(tmp_path)


def test_from_directory_loads_saved_payloads(tmp_path):
    _write_payloads(
        tmp_path,
        **{
            "fitness.json": FITNESS,
            "trace-sequences.json": TRACE_SEQUENCES,
            "outcome-distribution.json": OUTCOME_DISTRIBUTION,
        },
    )
    session = ConformanceSession.from_directory(tmp_path)
    assert len(session.store) == 3
    assert session.store.sequence_of("Trace 3") == ("Create", "Approve", "Pay")
    assert len(session.bubbles) == 10


def test_export_script_writes_enumerated_view(tmp_path):
    payload_dir = tmp_path / "payloads"
    payload_dir.mkdir()
    _write_payloads(payload_dir, **{"fitness.json": FITNESS, "trace-sequences.json": TRACE_SEQUENCES})
    output = tmp_path / "out" / "views.json"

    export_conformance_views.main(
        [
            "--input",
            str(payload_dir),
            "--output",
            str(output),
            "--select",
            "3, abc, 1, 9",
            "--desired",
            "Pay",
            "--mode",
            "contains",
            "--config",
            _log_config(tmp_path),
        ]
    )

    views = json.loads(output.read_text(encoding="utf-8"))
    assert views["mode"] == "enumerated"
    assert views["selected"] == [3, 1]
    assert [bar["label"] for bar in views["bars"]] == ["Trace 3", "Trace 1"]
    assert views["outcome"]["matching_mode"] == "contains"


def test_export_script_reports_payload_errors(tmp_path):
    (tmp_path / "fitness.json").write_text('{"not": "a list"}', encoding="utf-8")
    with pytest.raises(SystemExit):
        export_conformance_views.main(
            ["--input", str(tmp_path), "--output", str(tmp_path / "views.json"), "--config", _log_config(tmp_path)]
        )


def test_selection_counts_skipped_fitness_rows():
    fitness = [
        {"trace": "Trace 1", "conformance": "bad"},
        {"trace": "Trace 2", "conformance": 0.4},
        {"trace": "Trace 3", "conformance": 0.9},
    ]
    session = ConformanceSession.from_payloads(fitness)

    state = session.select(FilterState(), "3")
    view = session.view(state)

    assert state.selected == (3,)
    assert view.mode is ViewMode.ENUMERATED
    assert [trace.trace_id for trace in view.traces] == ["Trace 3"]


def test_selection_is_reparsed_against_a_new_dataset():
    larger = ConformanceSession.from_payloads(FITNESS, TRACE_SEQUENCES)
    smaller = ConformanceSession.from_payloads(FITNESS[:2], TRACE_SEQUENCES)
    state = larger.select(FilterState(), "1, 4")

    assert state.selected == (1, 4)
    assert smaller.select(state, "1, 4").selected == (1,)


def test_payload_labels_without_bins_are_classified_locally():
    session = ConformanceSession.from_payloads(
        FITNESS, TRACE_SEQUENCES, outcome_distribution={"desiredOutcomes": ["Pay"], "matching_mode": "end"}
    )

    assert session.outcome.desired_outcomes == ("Pay",)
    assert session.bubbles[0].y == 50
    assert session.bubbles[9].y == 100


def test_payload_labels_without_bins_or_sequences_warn(caplog):
    with caplog.at_level("WARNING", logger="conformance_viz"):
        session = ConformanceSession.from_payloads(FITNESS, outcome_distribution={"desiredOutcomes": ["Pay"]})

    assert all(bubble.y == 0 for bubble in session.bubbles)
    assert "has no bins" in caplog.text
