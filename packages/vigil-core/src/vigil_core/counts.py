"""Resolution of count references against a snapshot."""

from __future__ import annotations

from vigil_schemas.primitives import CountSource, JsonValue
from vigil_schemas.records import SourceSnapshot, WorkflowStatusRecord
from vigil_schemas.tracks import CountRef


def resolve_count(
    refs: list[CountRef],
    record: WorkflowStatusRecord | None,
    snapshot: SourceSnapshot,
) -> int:
    """Return the first positive value among the references.

    Args:
        refs: References tried in order.
        record: Status record supplying ``details`` values.
        snapshot: Snapshot supplying counts and signals.

    Returns:
        int: First positive count, or 0.
    """
    for ref in refs:
        value = lookup_count(ref, record, snapshot)
        if value > 0:
            return value
    return 0


def lookup_count(
    ref: CountRef,
    record: WorkflowStatusRecord | None,
    snapshot: SourceSnapshot,
) -> int:
    """Return the value of a single reference, 0 when absent or not numeric.

    Args:
        ref: Count reference.
        record: Status record supplying ``details`` values.
        snapshot: Snapshot supplying counts and signals.

    Returns:
        int: Non-negative count.
    """
    raw: JsonValue = None
    if ref.source == CountSource.COUNTS:
        raw = snapshot.counts.get(ref.key)
    elif ref.source == CountSource.DETAILS:
        raw = record.details.get(ref.key) if record is not None else None
    elif ref.source == CountSource.SIGNALS:
        raw = snapshot.signals.get(ref.key)
    return _as_count(raw)


def _as_count(raw: JsonValue) -> int:
    if isinstance(raw, bool) or raw is None:
        return 0
    if isinstance(raw, int):
        return max(raw, 0)
    if isinstance(raw, float):
        return max(int(raw), 0)
    if isinstance(raw, str) and raw.strip().isdigit():
        return int(raw.strip())
    return 0
