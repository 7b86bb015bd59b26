from __future__ import annotations

import io
import json
import math
import pathlib
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

import pandas as pd
from pandas.errors import ParserError
from pm4py.objects.conversion.log import converter as log_converter
from pm4py.objects.log.importer.xes import importer as xes_importer

from .logging_config import get_logger

LOGGER = get_logger("trace_store")
_TRACE_LABEL = re.compile(r"^\s*(?:trace\s*)?(\d+)\s*$", re.IGNORECASE)


class PayloadFormatError(Exception):
    """Raised when a backend payload does not have the expected shape."""


@dataclass(frozen=True)
class Trace:
    """
    One recorded execution as delivered by the analysis backend.

    `position` is the 1-based index of the trace in the backend's fitness list,
    which is what users type into the trace selection box.
    """

    trace_id: str
    conformance: float
    sequence: Tuple[str, ...] = ()
    position: int = 0

    @property
    def ordinal(self) -> Optional[int]:
        match = _TRACE_LABEL.match(self.trace_id)
        return int(match.group(1)) if match else None


@dataclass(frozen=True)
class ActivityDeviations:
    deviations: Any
    total_traces: int


@dataclass(frozen=True)
class TraceStore:
    """Immutable collection of traces held for the lifetime of one session."""

    traces: Tuple[Trace, ...] = ()
    skipped: int = 0
    _by_id: Dict[str, Trace] = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        for trace in self.traces:
            self._by_id.setdefault(trace.trace_id, trace)

    def __len__(self) -> int:
        return len(self.traces)

    @property
    def fitness_length(self) -> int:
        """Number of rows in the fitness list, skipped ones included."""
        return len(self.traces) + self.skipped

    def __iter__(self):
        return iter(self.traces)

    @classmethod
    def from_payloads(
        cls,
        fitness: Any,
        trace_sequences: Optional[Any] = None,
    ) -> "TraceStore":
        """
        Join the fitness list with the trace-to-sequence map on the trace label.

        Entries with a non-numeric or non-finite conformance are left out and
        counted in `skipped`.
        """
        fitness_rows = _require_records(fitness, "fitness", ("trace", "conformance"))
        sequence_rows = _require_records(trace_sequences or [], "trace sequences", ("trace", "sequence"))
        sequences = {str(row["trace"]): _coerce_sequence(row["sequence"]) for row in sequence_rows}

        traces: List[Trace] = []
        skipped = 0
        for position, row in enumerate(fitness_rows, start=1):
            trace_id = str(row["trace"])
            score = coerce_score(row["conformance"])
            if score is None:
                skipped += 1
                LOGGER.warning("Skipping %s: conformance %r is not a finite number.", trace_id, row["conformance"])
                continue
            traces.append(
                Trace(
                    trace_id=trace_id,
                    conformance=score,
                    sequence=sequences.get(trace_id, ()),
                    position=position,
                )
            )

        missing = sum(1 for trace in traces if trace.trace_id not in sequences)
        if sequence_rows and missing:
            LOGGER.warning("%s traces have no activity sequence in the trace-sequence payload.", missing)
        LOGGER.info("Trace store loaded: %s traces (%s skipped).", len(traces), skipped)
        return cls(traces=tuple(traces), skipped=skipped)

    @property
    def trace_ids(self) -> List[str]:
        return [trace.trace_id for trace in self.traces]

    def get(self, trace_id: str) -> Optional[Trace]:
        return self._by_id.get(trace_id)

    def by_position(self, position: int) -> Optional[Trace]:
        """Look up a trace by its 1-based position in the fitness list."""
        for trace in self.traces:
            if trace.position == position:
                return trace
        return None

    def sequence_of(self, trace_id: str) -> Tuple[str, ...]:
        trace = self.get(trace_id)
        return trace.sequence if trace else ()

    def to_dataframe(self) -> pd.DataFrame:
        rows = [
            {
                "trace": trace.trace_id,
                "position": trace.position,
                "conformance": trace.conformance,
                "events": len(trace.sequence),
                "sequence": trace.sequence,
            }
            for trace in self.traces
        ]
        return pd.DataFrame(rows, columns=["trace", "position", "conformance", "events", "sequence"])


def coerce_score(value: Any) -> Optional[float]:
    """Return `value` as a finite float, or None when it cannot be used as a score."""
    if isinstance(value, bool) or value is None:
        return None
    try:
        score = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(score):
        return None
    return score


def _coerce_sequence(value: Any) -> Tuple[str, ...]:
    if isinstance(value, str) or not isinstance(value, Iterable):
        raise PayloadFormatError(f"Activity sequence must be a list of labels, got {type(value).__name__}")
    return tuple(str(step) for step in value)


def _require_records(payload: Any, name: str, keys: Sequence[str]) -> List[Mapping[str, Any]]:
    if not isinstance(payload, list):
        raise PayloadFormatError(f"The {name} payload must be a JSON array, got {type(payload).__name__}")
    for idx, row in enumerate(payload):
        if not isinstance(row, Mapping):
            raise PayloadFormatError(f"Entry {idx} of the {name} payload is not an object")
        missing = set(keys) - set(row)
        if missing:
            raise PayloadFormatError(
                f"Entry {idx} of the {name} payload is missing: {', '.join(sorted(missing))}"
            )
    return payload


def parse_activity_deviations(payload: Any) -> ActivityDeviations:
    if not isinstance(payload, Mapping) or "deviations" not in payload:
        raise PayloadFormatError("The activity deviations payload must be an object with a 'deviations' key")
    try:
        total = int(payload.get("total_traces", 0))
    except (TypeError, ValueError) as exc:
        raise PayloadFormatError("'total_traces' must be an integer") from exc
    return ActivityDeviations(deviations=payload["deviations"], total_traces=total)


def load_payload_file(path: pathlib.Path) -> Any:
    """Read one backend JSON payload from disk."""
    try:
        return json.loads(pathlib.Path(path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise PayloadFormatError(f"{path} is not valid JSON: {exc.msg} (line {exc.lineno})") from exc


def try_auto_detect_columns(df: pd.DataFrame) -> tuple[str, str, str]:
    """
    Best-effort detection of case/activity/timestamp columns for CSV uploads.
    """
    lowered = {str(col).lower(): col for col in df.columns}

    def pick(options: Iterable[str]) -> Optional[str]:
        for option in options:
            if option in lowered:
                return lowered[option]
        return None

    candidates_case = ("case:concept:name", "case_id", "case", "caseid", "case concept name")
    candidates_act = ("concept:name", "activity", "event", "task")
    candidates_ts = ("time:timestamp", "timestamp", "time", "datetime")

    case_id_col = pick(candidates_case)
    activity_col = pick(candidates_act)
    timestamp_col = pick(candidates_ts)

    if not all([case_id_col, activity_col, timestamp_col]):
        raise PayloadFormatError("Could not auto-detect case/activity/timestamp columns.")

    return case_id_col, activity_col, timestamp_col


def _read_csv(file_bytes: bytes) -> pd.DataFrame:
    buffer = io.BytesIO(file_bytes)
    try:
        return pd.read_csv(buffer)
    except ParserError:
        buffer.seek(0)
        try:
            return pd.read_csv(buffer, sep=None, engine="python")
        except ParserError as exc_second:
            raise PayloadFormatError(
                "Unable to parse CSV content. Ensure the file uses a consistent delimiter (e.g., comma or semicolon) "
                "and that embedded commas are quoted."
            ) from exc_second


def sequences_from_event_log(file_bytes: bytes, kind: str = "xes") -> List[Dict[str, Any]]:
    """
    Derive the trace-to-sequence payload from a raw event log.

    Cases keep the order in which they first appear in the log and are labelled
    `Trace 1`, `Trace 2`, ... so that they line up with the backend fitness list.
    """
    kind = kind.lower().lstrip(".")
    if kind == "xes":
        event_log = xes_importer.deserialize(file_bytes.decode("utf-8"))
        df = log_converter.apply(event_log, variant=log_converter.Variants.TO_DATA_FRAME)
    elif kind == "csv":
        df = _read_csv(file_bytes)
    else:
        raise ValueError(f"Unsupported event log format: {kind}. Use xes or csv")

    case_col, activity_col, timestamp_col = try_auto_detect_columns(df)
    frame = df[[case_col, activity_col, timestamp_col]].rename(
        columns={case_col: "case_id", activity_col: "activity", timestamp_col: "timestamp"}
    )
    frame["case_id"] = frame["case_id"].astype(str)
    frame["activity"] = frame["activity"].astype(str)
    frame["timestamp"] = pd.to_datetime(frame["timestamp"], utc=True)
    frame["_row"] = range(len(frame))

    payload: List[Dict[str, Any]] = []
    for idx, (_, case_df) in enumerate(frame.groupby("case_id", sort=False), start=1):
        ordered = case_df.sort_values(["timestamp", "_row"], kind="stable")
        payload.append({"trace": f"Trace {idx}", "sequence": ordered["activity"].tolist()})
    LOGGER.info("Derived %s trace sequences from %s event log.", len(payload), kind.upper())
    return payload
