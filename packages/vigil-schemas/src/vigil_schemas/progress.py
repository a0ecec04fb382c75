"""Derived per-tick progress state for onboarding tracks."""

from __future__ import annotations

from pydantic import Field, model_validator

from vigil_schemas.base import BaseSchema
from vigil_schemas.primitives import (
    EventName,
    SessionId,
    StageBadgeValue,
    StatusKey,
    Timestamp,
    TrackErrorKindValue,
    TrackId,
    TrackIdValue,
    WorkspaceId,
)


class CountValue(BaseSchema):
    """Labelled count shown on a track card."""

    label: str = Field(..., min_length=1, description="Display label")
    value: int = Field(..., ge=0, description="Count value")


class TrackState(BaseSchema):
    """Effective state of one track for one tick."""

    track_id: TrackIdValue = Field(..., description="Track identifier")
    title: str = Field(..., min_length=1, description="Card title")
    declared_status: StatusKey | None = Field(
        None, description="Status from the backend record, if any"
    )
    updated_at: Timestamp | None = Field(
        None, description="Last backend update of the record"
    )
    effective_status: StatusKey = Field(
        ..., description="Status after staleness, inference and gating"
    )
    phase_index: int = Field(..., ge=0, description="Index in the phase table")
    phase_label: str = Field(..., min_length=1, description="Phase display label")
    badge: StageBadgeValue = Field(..., description="Card badge")
    progress_percent: float = Field(..., ge=0, le=100, description="Bar value")
    counts: list[CountValue] = Field(
        default_factory=list, description="Sub-counts for display"
    )
    current_item: str | None = Field(
        None, description="Item currently being processed"
    )
    bulk_current: int | None = Field(None, ge=0, description="Bulk phase position")
    bulk_total: int | None = Field(None, ge=0, description="Bulk phase size")
    eta_seconds: float | None = Field(
        None, ge=0, description="Estimated seconds remaining"
    )
    error: str | None = Field(None, description="Failure reason")
    error_kind: TrackErrorKindValue | None = Field(None, description="Failure origin")
    gate_open: bool = Field(True, description="Upstream dependency is satisfied")
    retry_available: bool = Field(False, description="Track retry is offered")
    dispatch_error: str | None = Field(
        None, description="Stage-start call failure"
    )
    dispatch_retry_available: bool = Field(
        False, description="Dispatch-only retry is offered"
    )

    @model_validator(mode="after")
    def validate_error_pairing(self) -> TrackState:
        """Ensure error text and kind are set together.

        Returns:
            TrackState: Validated state.

        Raises:
            ValueError: If only one of error and error_kind is set.
        """
        if (self.error is None) != (self.error_kind is None):
            raise ValueError("error and error_kind must be set together")
        return self


class OnboardingProgress(BaseSchema):
    """Reduced view of every track for one tick."""

    workspace_id: WorkspaceId = Field(..., description="Tenant identifier")
    tracks: list[TrackState] = Field(..., description="Track states in order")
    all_complete: bool = Field(..., description="Every track reached success")
    can_skip: bool = Field(True, description="Skip is always available")
    computed_at: Timestamp = Field(..., description="Snapshot timestamp")
    connection_error: str | None = Field(
        None, description="Set when polling has failed for too long"
    )

    @model_validator(mode="after")
    def validate_unique_tracks(self) -> OnboardingProgress:
        """Ensure a single state per track.

        Returns:
            OnboardingProgress: Validated progress.

        Raises:
            ValueError: If a track appears more than once.
        """
        ids = [track.track_id for track in self.tracks]
        if len(set(ids)) != len(ids):
            raise ValueError("tracks must be unique per track_id")
        return self

    def track(self, track_id: TrackId | str) -> TrackState | None:
        """Return the state for one track.

        Args:
            track_id: Track identifier.

        Returns:
            TrackState | None: Matching state.
        """
        for state in self.tracks:
            if state.track_id == track_id:
                return state
        return None


class ProgressUpdate(BaseSchema):
    """Progress snapshot emitted to progress sinks."""

    session_id: SessionId = Field(..., description="Observer session identifier")
    event: EventName = Field(..., description="Update event name")
    timestamp: Timestamp = Field(..., description="Emission timestamp")
    progress: OnboardingProgress = Field(..., description="Reduced progress")
