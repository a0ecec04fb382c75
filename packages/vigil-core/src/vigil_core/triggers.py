"""One-shot stage-start trigger latches."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum

from vigil_core.counts import lookup_count
from vigil_core.inference import (
    DEFAULT_COMPLETION_THRESHOLD,
    completion_ratio_met,
    declared_status,
)
from vigil_schemas.records import SourceSnapshot, WorkflowStatusRecord
from vigil_schemas.tracks import TrackDefinition, TrackRegistry


class TriggerDecision(StrEnum):
    """Outcome of evaluating an armed trigger."""

    IDLE = "idle"
    FIRE = "fire"
    SKIP_SATISFIED = "skip_satisfied"
    SKIP_STARTED = "skip_started"


@dataclass(slots=True)
class TriggerLatch:
    """In-memory trigger state for one dependent track."""

    fired: bool = False
    armed: bool = False
    gate_open: bool | None = None
    error: str | None = None


class TriggerDispatcher:
    """Decides when stage-start calls fire for one workspace session.

    A latch is armed when its gate is observed opening, fires at most once
    while armed, and stays fired until a failure or an explicit retry resets
    it. A failure re-arms an open gate, so the next tick may fire again once
    the preconditions still hold. Nothing here is persisted; a new session
    starts with fresh latches.
    """

    def __init__(
        self,
        registry: TrackRegistry,
        *,
        completion_threshold: float = DEFAULT_COMPLETION_THRESHOLD,
    ) -> None:
        """Initialize latches for every track that defines a trigger.

        Args:
            registry: Registered tracks.
            completion_threshold: Ratio treated as already satisfied.
        """
        self._completion_threshold = completion_threshold
        self._latches: dict[str, TriggerLatch] = {
            track.track_id: TriggerLatch()
            for track in registry.tracks
            if track.trigger is not None
        }

    def latch(self, track_id: str) -> TriggerLatch | None:
        """Return the latch for a track, if it has a trigger."""
        return self._latches.get(track_id)

    def observe_gate(self, track_id: str, gate_open: bool) -> bool:
        """Record the gate state seen this tick.

        Args:
            track_id: Dependent track.
            gate_open: Whether the gate is open this tick.

        Returns:
            bool: True when this observation is a gate opening.
        """
        latch = self._latches.get(track_id)
        if latch is None:
            return False
        opened = gate_open and latch.gate_open is not True
        if opened:
            latch.armed = True
        elif not gate_open:
            latch.armed = False
        latch.gate_open = gate_open
        return opened

    def maybe_trigger(
        self,
        track: TrackDefinition,
        effective_status: str,
        record: WorkflowStatusRecord | None,
        snapshot: SourceSnapshot,
    ) -> TriggerDecision:
        """Decide whether an armed trigger fires this tick.

        Firing sets the latch; the caller is responsible for making the call
        and reporting the outcome through ``mark_failed``/``mark_succeeded``.
        The started check uses the declared status: counts can promote the
        effective status before the stage itself was ever started.

        Args:
            track: Dependent track definition.
            effective_status: Effective status after gating.
            record: Latest status record, if any.
            snapshot: Snapshot for this tick.

        Returns:
            TriggerDecision: What the caller should do.
        """
        latch = self._latches.get(track.track_id)
        trigger = track.trigger
        if latch is None or trigger is None:
            return TriggerDecision.IDLE
        if not latch.armed or latch.fired:
            return TriggerDecision.IDLE
        if not trigger.automatic:
            latch.armed = False
            return TriggerDecision.IDLE
        if completion_ratio_met(track, record, snapshot, self._completion_threshold):
            latch.armed = False
            return TriggerDecision.SKIP_SATISFIED
        declared = declared_status(track, record)
        if (
            declared not in track.not_started_statuses
            or effective_status == track.failure_status
        ):
            latch.armed = False
            return TriggerDecision.SKIP_STARTED
        if any(lookup_count(ref, record, snapshot) <= 0 for ref in trigger.requires):
            return TriggerDecision.IDLE
        latch.fired = True
        latch.armed = False
        latch.error = None
        return TriggerDecision.FIRE

    def begin_manual(self, track_id: str) -> bool:
        """Reset the latch and claim it for an explicit retry.

        Args:
            track_id: Dependent track.

        Returns:
            bool: False when the track has no trigger.
        """
        latch = self._latches.get(track_id)
        if latch is None:
            return False
        latch.fired = True
        latch.armed = False
        latch.error = None
        return True

    def reset(self, track_id: str) -> None:
        """Clear the latch and error, and re-arm for the next open gate."""
        latch = self._latches.get(track_id)
        if latch is None:
            return
        latch.fired = False
        latch.error = None
        latch.armed = latch.gate_open is True

    def mark_failed(self, track_id: str, reason: str) -> None:
        """Release the latch after a failed call and keep the error.

        The latch stays armed while its gate is open, so a later tick fires
        again when the stage is still unstarted. At most one call is in flight
        per latch and evaluation happens once per tick.

        Args:
            track_id: Dependent track.
            reason: Failure reason shown to the user.
        """
        latch = self._latches.get(track_id)
        if latch is None:
            return
        latch.fired = False
        latch.armed = latch.gate_open is True
        latch.error = reason

    def mark_succeeded(self, track_id: str) -> None:
        """Clear any previous dispatch error."""
        latch = self._latches.get(track_id)
        if latch is not None:
            latch.error = None

    def error_for(self, track_id: str) -> str | None:
        """Return the outstanding dispatch error for a track."""
        latch = self._latches.get(track_id)
        return latch.error if latch is not None else None
