"""Progress bar calculation.

Tracks expose different granularities of truth, so the bar degrades
through three tiers: an authoritative percentage from counts, a blended
percentage for bulk phases with ``current``/``total`` sub-counts, and a
phase-index fallback.
"""

from __future__ import annotations

from vigil_core.counts import lookup_count
from vigil_core.inference import completion_counts
from vigil_core.phases import WAITING_STATUS, phase_index, total_phases
from vigil_schemas.records import SourceSnapshot, WorkflowStatusRecord
from vigil_schemas.tracks import TrackDefinition

BULK_HEAD_PERCENT = 20.0
BULK_SPAN_PERCENT = 60.0


def compute_progress_percent(
    track: TrackDefinition,
    status: str,
    record: WorkflowStatusRecord | None,
    snapshot: SourceSnapshot,
) -> float:
    """Compute a 0-100 bar value for a track.

    Args:
        track: Track definition.
        status: Effective status after gating.
        record: Latest status record, if any.
        snapshot: Snapshot for this tick.

    Returns:
        float: Progress percentage clamped to [0, 100].
    """
    if status == WAITING_STATUS:
        return 0.0
    if status in track.success_statuses:
        return 100.0
    if track.percent_from_counts:
        done, total = completion_counts(track, record, snapshot)
        if total <= 0:
            return 0.0
        return _clamp(float(round(done / total * 100)))
    bulk = bulk_progress(track, status, record, snapshot)
    if bulk is not None:
        current, total = bulk
        return _clamp(BULK_HEAD_PERCENT + current / total * BULK_SPAN_PERCENT)
    return index_percent(track, status)


def bulk_progress(
    track: TrackDefinition,
    status: str,
    record: WorkflowStatusRecord | None,
    snapshot: SourceSnapshot,
) -> tuple[int, int] | None:
    """Return ``(current, total)`` while a bulk phase reports sub-counts.

    Args:
        track: Track definition.
        status: Effective status.
        record: Latest status record, if any.
        snapshot: Snapshot for this tick.

    Returns:
        tuple[int, int] | None: Sub-counts, or None outside bulk phases.
    """
    if status not in track.bulk_phases:
        return None
    if track.bulk_current is None or track.bulk_total is None:
        return None
    total = lookup_count(track.bulk_total, record, snapshot)
    if total <= 0:
        return None
    current = min(lookup_count(track.bulk_current, record, snapshot), total)
    return current, total


def index_percent(track: TrackDefinition, status: str) -> float:
    """Return the phase-index based percentage for a status."""
    denominator = total_phases(track) - 1
    if denominator <= 0:
        return 0.0
    return _clamp(phase_index(track, status) / denominator * 100)


def estimate_eta_seconds(
    track: TrackDefinition, status: str, done: int, total: int
) -> float | None:
    """Estimate remaining seconds for throughput-bounded tracks.

    Args:
        track: Track definition.
        status: Effective status.
        done: Completed items.
        total: Total items.

    Returns:
        float | None: Seconds remaining, or None when no estimate applies.
    """
    if track.throughput_per_minute is None:
        return None
    if status in track.terminal_statuses or status == WAITING_STATUS:
        return None
    remaining = total - done
    if total <= 0 or remaining <= 0:
        return None
    return remaining / track.throughput_per_minute * 60


def _clamp(value: float) -> float:
    return max(0.0, min(100.0, value))
