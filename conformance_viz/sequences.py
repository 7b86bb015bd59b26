from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .binning import Bucket, bucket_index
from .logging_config import get_logger
from .trace_store import PayloadFormatError, TraceStore

LOGGER = get_logger("sequences")
SEQUENCE_SEPARATOR = " → "


@dataclass(frozen=True)
class SequenceGroup:
    sequence: Tuple[str, ...]
    count: int

    def to_dict(self) -> Dict[str, Any]:
        return {"sequence": list(self.sequence), "count": self.count}


def format_sequence(sequence: Iterable[str]) -> str:
    return SEQUENCE_SEPARATOR.join(str(step) for step in sequence)


def deduplicate(bucket: Bucket) -> List[SequenceGroup]:
    """
    Collapse the member traces of a bucket into distinct activity sequences.

    Groups are returned in first-seen order, not sorted by count.
    """
    counts: Dict[Tuple[str, ...], int] = {}
    for trace in bucket.traces:
        key = tuple(trace.sequence)
        counts[key] = counts.get(key, 0) + 1
    return [SequenceGroup(sequence=sequence, count=count) for sequence, count in counts.items()]


class SequenceIndex:
    """
    Per-bucket lookup of distinct behaviours, plus per-trace sequence lookup.

    Built either from locally computed buckets or from the backend's
    unique-sequence bins (which are index-aligned with the bucket ordering).
    """

    def __init__(self, groups: Sequence[Sequence[SequenceGroup]], store: Optional[TraceStore] = None):
        self._groups: List[Tuple[SequenceGroup, ...]] = [tuple(bucket_groups) for bucket_groups in groups]
        self._store = store if store is not None else TraceStore()

    @classmethod
    def build(cls, store: TraceStore, buckets: Sequence[Bucket]) -> "SequenceIndex":
        index = cls([deduplicate(bucket) for bucket in buckets], store)
        LOGGER.debug(
            "Sequence index built: %s distinct sequences across %s buckets.",
            sum(len(groups) for groups in index._groups),
            len(buckets),
        )
        return index

    @classmethod
    def from_payload(cls, unique_sequence_bins: Any, store: Optional[TraceStore] = None) -> "SequenceIndex":
        if not isinstance(unique_sequence_bins, list):
            raise PayloadFormatError("The unique sequences payload must be a JSON array")
        groups: List[List[SequenceGroup]] = []
        for idx, raw in enumerate(unique_sequence_bins):
            if not isinstance(raw, dict) or not isinstance(raw.get("sequences", []), list):
                raise PayloadFormatError(f"Entry {idx} of the unique sequences payload has no 'sequences' list")
            counts: Dict[Tuple[str, ...], int] = {}
            for sequence in raw.get("sequences", []):
                key = tuple(str(step) for step in sequence)
                counts[key] = counts.get(key, 0) + 1
            groups.append([SequenceGroup(sequence=key, count=count) for key, count in counts.items()])
        return cls(groups, store)

    def __len__(self) -> int:
        return len(self._groups)

    def groups_for_bucket(self, bucket_index: int) -> List[SequenceGroup]:
        if 0 <= bucket_index < len(self._groups):
            return list(self._groups[bucket_index])
        return []

    def sequences_for_bucket(self, bucket_index: int) -> List[Tuple[str, ...]]:
        return [group.sequence for group in self.groups_for_bucket(bucket_index)]

    def unique_count(self, bucket_index: int) -> int:
        return len(self.groups_for_bucket(bucket_index))

    def sequence_for_trace(self, trace_id: str) -> Tuple[str, ...]:
        return self._store.sequence_of(trace_id)

    def bucket_of_trace(self, trace_id: str) -> Optional[int]:
        trace = self._store.get(trace_id)
        if trace is None or not self._groups:
            return None
        return bucket_index(trace.conformance, len(self._groups))
