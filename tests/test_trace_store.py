import pytest

from conformance_viz.trace_store import (
    PayloadFormatError,
    Trace,
    TraceStore,
    coerce_score,
    load_payload_file,
    parse_activity_deviations,
    sequences_from_event_log,
    try_auto_detect_columns,
)

FITNESS = [
    {"trace": "Trace 1", "conformance": 0.8},
    {"trace": "Trace 2", "conformance": "n/a"},
    {"trace": "Trace 3", "conformance": "0.25"},
]
SEQUENCES = [
    {"trace": "Trace 1", "sequence": ["A", "B"]},
    {"trace": "Trace 3", "sequence": ["A", "C", "C"]},
]


def test_from_payloads_joins_sequences_and_skips_dirty_scores():
    store = TraceStore.from_payloads(FITNESS, SEQUENCES)

    assert len(store) == 2
    assert store.skipped == 1
    assert store.trace_ids == ["Trace 1", "Trace 3"]
    assert store.get("Trace 3").conformance == pytest.approx(0.25)
    assert store.sequence_of("Trace 3") == ("A", "C", "C")
    assert store.sequence_of("Trace 2") == ()


def test_positions_keep_backend_numbering():
    store = TraceStore.from_payloads(FITNESS, SEQUENCES)
    assert store.by_position(3).trace_id == "Trace 3"
    assert store.by_position(2) is None
    assert store.fitness_length == 3


def test_trace_without_sequence_entry_gets_empty_sequence():
    store = TraceStore.from_payloads([{"trace": "Trace 9", "conformance": 1}])
    assert store.get("Trace 9").sequence == ()


def test_dirty_scores_are_logged(caplog):
    with caplog.at_level("WARNING", logger="conformance_viz"):
        TraceStore.from_payloads(FITNESS, SEQUENCES)
    assert any("Trace 2" in record.getMessage() for record in caplog.records)


@pytest.mark.parametrize(
    "payload",
    [
        {"trace": "Trace 1", "conformance": 0.5},
        [{"trace": "Trace 1"}],
        ["Trace 1"],
    ],
)
def test_from_payloads_rejects_wrong_shapes(payload):
    with pytest.raises(PayloadFormatError):
        TraceStore.from_payloads(payload)


def test_sequence_must_be_a_list():
    with pytest.raises(PayloadFormatError):
        TraceStore.from_payloads(FITNESS, [{"trace": "Trace 1", "sequence": "A,B"}])


@pytest.mark.parametrize(
    "value, expected",
    [(0.5, 0.5), ("0.75", 0.75), (1, 1.0), (None, None), ("abc", None), (float("inf"), None), (True, None)],
)
def test_coerce_score(value, expected):
    assert coerce_score(value) == expected


def test_trace_ordinal_parsing():
    assert Trace("Trace 12", 0.5).ordinal == 12
    assert Trace("7", 0.5).ordinal == 7
    assert Trace("case-a", 0.5).ordinal is None


def test_to_dataframe_columns():
    frame = TraceStore.from_payloads(FITNESS, SEQUENCES).to_dataframe()
    assert list(frame.columns) == ["trace", "position", "conformance", "events", "sequence"]
    assert frame["events"].tolist() == [2, 3]


def test_activity_deviations_are_passed_through():
    deviations = parse_activity_deviations({"deviations": [{"activity": "A", "skipped": 3}], "total_traces": "12"})
    assert deviations.total_traces == 12
    assert deviations.deviations == [{"activity": "A", "skipped": 3}]
    with pytest.raises(PayloadFormatError):
        parse_activity_deviations([])


def test_load_payload_file(tmp_path):
    good = tmp_path / "fitness.json"
    good.write_text('[{"trace": "Trace 1", "conformance": 0.4}]', encoding="utf-8")
    bad = tmp_path / "broken.json"
    bad.write_text("[{", encoding="utf-8")

    assert load_payload_file(good) == [{"trace": "Trace 1", "conformance": 0.4}]
    with pytest.raises(PayloadFormatError):
        load_payload_file(bad)


def test_sequences_from_csv_event_log_orders_by_timestamp():
    csv_bytes = (
        "case_id,activity,timestamp\n"
        "c2,Create,2024-01-02T09:00:00Z\n"
        "c1,Approve,2024-01-01T10:00:00Z\n"
        "c1,Create,2024-01-01T09:00:00Z\n"
        "c2,Pay,2024-01-02T11:00:00Z\n"
    ).encode("utf-8")

    payload = sequences_from_event_log(csv_bytes, kind=".csv")

    assert payload == [
        {"trace": "Trace 1", "sequence": ["Create", "Pay"]},
        {"trace": "Trace 2", "sequence": ["Create", "Approve"]},
    ]


def test_sequences_from_event_log_rejects_unknown_format():
    with pytest.raises(ValueError):
        sequences_from_event_log(b"", kind="json")


def test_auto_detect_requires_all_columns():
    import pandas as pd

    with pytest.raises(PayloadFormatError):
        try_auto_detect_columns(pd.DataFrame(columns=["case_id", "activity"]))
