"""Per-tick reduction from a source snapshot to onboarding progress."""

from __future__ import annotations

from datetime import datetime

from vigil_core.aggregate import all_tracks_complete
from vigil_core.counts import resolve_count
from vigil_core.gate import apply_gate, gate_is_open
from vigil_core.inference import (
    InferenceResult,
    completion_counts,
    infer_effective_status,
)
from vigil_core.phases import WAITING_STATUS, phase_index, phase_label
from vigil_core.progress import (
    bulk_progress,
    compute_progress_percent,
    estimate_eta_seconds,
)
from vigil_schemas.config import PollingConfig
from vigil_schemas.primitives import StageBadge
from vigil_schemas.progress import CountValue, OnboardingProgress, TrackState
from vigil_schemas.records import SourceSnapshot, WorkflowStatusRecord
from vigil_schemas.tracks import TrackDefinition, TrackRegistry


def reconcile(
    snapshot: SourceSnapshot,
    registry: TrackRegistry,
    *,
    now: datetime,
    polling: PollingConfig | None = None,
) -> OnboardingProgress:
    """Reduce one snapshot into the progress of every track.

    Tracks are evaluated upstream-first against the same snapshot so that
    gate decisions are consistent within a tick.

    Args:
        snapshot: Snapshot for this tick.
        registry: Registered tracks, upstream first.
        now: Current time for staleness checks.
        polling: Thresholds; defaults apply when omitted.

    Returns:
        OnboardingProgress: Fresh progress, never merged with prior ticks.
    """
    polling = polling or PollingConfig()
    effective: dict[str, str] = {}
    states: list[TrackState] = []
    for track in registry.tracks:
        record = snapshot.record_for(track.workflow_type)
        inferred = infer_effective_status(
            track,
            record,
            snapshot,
            now=now,
            stale_after_seconds=polling.stale_after_seconds,
            completion_threshold=polling.completion_threshold,
        )
        gate_open = gate_is_open(track, effective, registry)
        result = apply_gate(inferred, gate_open)
        effective[track.track_id] = result.status
        states.append(build_track_state(track, record, snapshot, result, gate_open))
    return OnboardingProgress(
        workspace_id=snapshot.workspace_id,
        tracks=states,
        all_complete=all_tracks_complete(registry, states),
        can_skip=True,
        computed_at=snapshot.fetched_at,
    )


def build_track_state(
    track: TrackDefinition,
    record: WorkflowStatusRecord | None,
    snapshot: SourceSnapshot,
    result: InferenceResult,
    gate_open: bool,
) -> TrackState:
    """Build the display state for one track.

    Args:
        track: Track definition.
        record: Latest status record, if any.
        snapshot: Snapshot for this tick.
        result: Gated inference output.
        gate_open: Whether the upstream succeeded.

    Returns:
        TrackState: Track state for this tick.
    """
    status = result.status
    done, total = completion_counts(track, record, snapshot)
    bulk = bulk_progress(track, status, record, snapshot)
    current_item: str | None = None
    if bulk is not None and track.current_item_key and record is not None:
        raw_item = record.details.get(track.current_item_key)
        if isinstance(raw_item, str) and raw_item.strip():
            current_item = raw_item.strip()
    return TrackState(
        track_id=track.track_id,
        title=track.title,
        declared_status=record.status if record is not None else None,
        updated_at=record.updated_at if record is not None else None,
        effective_status=status,
        phase_index=phase_index(track, status),
        phase_label=phase_label(track, status),
        badge=badge_for(track, status),
        progress_percent=compute_progress_percent(track, status, record, snapshot),
        counts=[
            CountValue(
                label=display.label,
                value=resolve_count(display.refs, record, snapshot),
            )
            for display in track.count_displays
        ],
        current_item=current_item,
        bulk_current=bulk[0] if bulk is not None else None,
        bulk_total=bulk[1] if bulk is not None else None,
        eta_seconds=estimate_eta_seconds(track, status, done, total),
        error=result.error,
        error_kind=result.error_kind,
        gate_open=gate_open,
        retry_available=status == track.failure_status,
    )


def badge_for(track: TrackDefinition, status: str) -> StageBadge:
    """Map an effective status to a card badge.

    Args:
        track: Track definition.
        status: Effective status.

    Returns:
        StageBadge: Badge for the card.
    """
    if status in track.success_statuses:
        return StageBadge.DONE
    if status == track.failure_status:
        return StageBadge.ERROR
    if status == WAITING_STATUS or status in track.not_started_statuses:
        return StageBadge.PENDING
    return StageBadge.IN_PROGRESS
