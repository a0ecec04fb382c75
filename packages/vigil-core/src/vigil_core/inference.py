"""Effective status inference.

The declared status on a workflow record is written by the external job and
can lag, freeze or never reach a terminal value. Inference merges it with
corroborating counts and auxiliary signals through an ordered list of rules
where the first match wins:

1. The record stopped updating while non-terminal: ``failed``.
2. The declared status is terminal: kept as declared.
3. An auxiliary success signal matches: the track's success phase.
4. ``done / total`` reached the completion threshold: the success phase.
5. Work is visibly moving while the record still says "not started": the
   track's in-progress phase.
6. Otherwise the declared status verbatim.

Everything here is pure so that each rule can be exercised without I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum

from vigil_core.counts import resolve_count
from vigil_core.staleness import (
    DEFAULT_STALE_AFTER_SECONDS,
    STALE_ERROR_MESSAGE,
    is_stale,
)
from vigil_schemas.primitives import TrackErrorKind
from vigil_schemas.records import SourceSnapshot, WorkflowStatusRecord
from vigil_schemas.tracks import TrackDefinition

DEFAULT_COMPLETION_THRESHOLD = 0.99
DECLARED_FAILURE_FALLBACK = "An error occurred"
_ERROR_DETAIL_KEYS = ("error", "error_message", "message")


class InferenceRule(StrEnum):
    """Rule that produced an effective status."""

    STALE = "stale"
    DECLARED_TERMINAL = "declared_terminal"
    SUCCESS_SIGNAL = "success_signal"
    COMPLETION_RATIO = "completion_ratio"
    ACTIVITY = "activity"
    DECLARED = "declared"
    GATED = "gated"


@dataclass(slots=True, frozen=True)
class InferenceResult:
    """Effective status with the rule that produced it."""

    status: str
    rule: InferenceRule
    error: str | None = None
    error_kind: TrackErrorKind | None = None


def declared_status(
    track: TrackDefinition, record: WorkflowStatusRecord | None
) -> str:
    """Return the declared status, or the first phase when no record exists."""
    if record is None:
        return track.first_status
    return record.status


def completion_counts(
    track: TrackDefinition,
    record: WorkflowStatusRecord | None,
    snapshot: SourceSnapshot,
) -> tuple[int, int]:
    """Return ``(done, total)`` for a track.

    Args:
        track: Track definition.
        record: Latest status record, if any.
        snapshot: Snapshot for this tick.

    Returns:
        tuple[int, int]: Completed and total work counts.
    """
    return (
        resolve_count(track.done, record, snapshot),
        resolve_count(track.total, record, snapshot),
    )


def completion_ratio_met(
    track: TrackDefinition,
    record: WorkflowStatusRecord | None,
    snapshot: SourceSnapshot,
    threshold: float = DEFAULT_COMPLETION_THRESHOLD,
) -> bool:
    """Check whether done/total reached the completion threshold.

    Args:
        track: Track definition.
        record: Latest status record, if any.
        snapshot: Snapshot for this tick.
        threshold: Ratio treated as finished.

    Returns:
        bool: True when total is positive and the ratio is met.
    """
    if not track.done or not track.total:
        return False
    done, total = completion_counts(track, record, snapshot)
    if total <= 0:
        return False
    return done / total >= threshold


def success_signal_matches(track: TrackDefinition, snapshot: SourceSnapshot) -> bool:
    """Check the auxiliary signals that mark the work as finished."""
    for signal in track.success_signals:
        if signal.key not in snapshot.signals:
            continue
        if snapshot.signals[signal.key] in signal.values:
            return True
    return False


def _activity_count(
    track: TrackDefinition,
    record: WorkflowStatusRecord | None,
    snapshot: SourceSnapshot,
) -> int:
    refs = track.activity or track.done
    return resolve_count(refs, record, snapshot)


def _declared_error(record: WorkflowStatusRecord | None) -> str:
    if record is None:
        return DECLARED_FAILURE_FALLBACK
    for key in _ERROR_DETAIL_KEYS:
        value = record.details.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return DECLARED_FAILURE_FALLBACK


def infer_effective_status(
    track: TrackDefinition,
    record: WorkflowStatusRecord | None,
    snapshot: SourceSnapshot,
    *,
    now: datetime,
    stale_after_seconds: float = DEFAULT_STALE_AFTER_SECONDS,
    completion_threshold: float = DEFAULT_COMPLETION_THRESHOLD,
) -> InferenceResult:
    """Compute the effective status of one track.

    Args:
        track: Track definition.
        record: Latest status record, if any.
        snapshot: Snapshot for this tick.
        now: Current time for staleness checks.
        stale_after_seconds: Inactivity threshold.
        completion_threshold: done/total ratio treated as finished.

    Returns:
        InferenceResult: Effective status and the rule that produced it.
    """
    declared = declared_status(track, record)

    if is_stale(track, record, now, stale_after_seconds):
        return InferenceResult(
            status=track.failure_status,
            rule=InferenceRule.STALE,
            error=STALE_ERROR_MESSAGE,
            error_kind=TrackErrorKind.STALE,
        )

    if declared in track.terminal_statuses:
        if declared == track.failure_status:
            return InferenceResult(
                status=declared,
                rule=InferenceRule.DECLARED_TERMINAL,
                error=_declared_error(record),
                error_kind=TrackErrorKind.DECLARED,
            )
        return InferenceResult(status=declared, rule=InferenceRule.DECLARED_TERMINAL)

    if success_signal_matches(track, snapshot):
        return InferenceResult(
            status=track.success_status, rule=InferenceRule.SUCCESS_SIGNAL
        )

    if completion_ratio_met(track, record, snapshot, completion_threshold):
        return InferenceResult(
            status=track.success_status, rule=InferenceRule.COMPLETION_RATIO
        )

    if (
        track.in_progress_status is not None
        and declared in track.not_started_statuses
        and track.total
    ):
        total = resolve_count(track.total, record, snapshot)
        if total > 0 and _activity_count(track, record, snapshot) > 0:
            return InferenceResult(
                status=track.in_progress_status, rule=InferenceRule.ACTIVITY
            )

    return InferenceResult(status=declared, rule=InferenceRule.DECLARED)
