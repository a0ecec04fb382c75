"""Event taxonomy and structured payloads for observer sessions."""

from __future__ import annotations

from enum import StrEnum

from pydantic import Field

from vigil_schemas.base import BaseSchema
from vigil_schemas.primitives import StatusKey, TrackErrorKindValue


class SessionEvent(StrEnum):
    """Event names for session lifecycle."""

    MOUNTED = "session_mounted"
    UNMOUNTED = "session_unmounted"
    ALL_COMPLETE = "all_tracks_complete"


class PollEvent(StrEnum):
    """Event names for poll ticks."""

    FAILED = "poll_failed"
    RECOVERED = "poll_recovered"


class TrackEvent(StrEnum):
    """Event names for track transitions."""

    STATUS_CHANGED = "track_status_changed"
    STALE = "track_stale"
    GATE_OPENED = "gate_opened"
    RETRY_REQUESTED = "track_retry_requested"


class TriggerEvent(StrEnum):
    """Event names for stage-start dispatches."""

    DISPATCHED = "trigger_dispatched"
    SKIPPED = "trigger_skipped"
    FAILED = "trigger_failed"


class ProgressEvent(StrEnum):
    """Event names for progress updates."""

    SESSION_MOUNTED = "session_mounted"
    TICK = "progress_tick"
    DISPATCH_UPDATED = "dispatch_updated"


class TriggerSkipReason(StrEnum):
    """Why an armed trigger did not fire."""

    ALREADY_SATISFIED = "already_satisfied"
    ALREADY_STARTED = "already_started"


class SessionMountedData(BaseSchema):
    """Payload for session mount events."""

    tracks: list[str] = Field(..., description="Tracks observed by the session")
    interval_seconds: float = Field(..., gt=0, description="Poll interval")


class SessionUnmountedData(BaseSchema):
    """Payload for session unmount events."""

    elapsed_seconds: float = Field(..., ge=0, description="Time since mount")
    cancelled_dispatches: int = Field(
        ..., ge=0, description="Dispatch tasks cancelled on unmount"
    )


class PollFailedData(BaseSchema):
    """Payload for failed poll ticks."""

    consecutive_failures: int = Field(..., ge=1, description="Failures in a row")
    reason: str = Field(..., min_length=1, description="Failure reason")


class TrackStatusChangedData(BaseSchema):
    """Payload for effective status transitions."""

    previous_status: StatusKey | None = Field(None, description="Previous status")
    effective_status: StatusKey = Field(..., description="New effective status")
    declared_status: StatusKey | None = Field(None, description="Declared status")
    progress_percent: float = Field(..., ge=0, le=100, description="Bar value")


class TrackStaleData(BaseSchema):
    """Payload for tracks forced to failure by staleness."""

    declared_status: StatusKey = Field(..., description="Frozen declared status")
    updated_at: str | None = Field(None, description="Last record update")
    error_kind: TrackErrorKindValue = Field(..., description="Failure origin")


class TriggerDispatchedData(BaseSchema):
    """Payload for stage-start dispatches."""

    workflow: str = Field(..., min_length=1, description="Webhook path")
    callback_url: str = Field(..., min_length=1, description="Callback address")
    manual: bool = Field(..., description="Fired by an explicit retry")


class TriggerSkippedData(BaseSchema):
    """Payload for armed triggers that did not fire."""

    reason: TriggerSkipReason = Field(..., description="Skip reason")


class TriggerFailedData(BaseSchema):
    """Payload for failed stage-start dispatches."""

    workflow: str = Field(..., min_length=1, description="Webhook path")
    reason: str = Field(..., min_length=1, description="Failure reason")
