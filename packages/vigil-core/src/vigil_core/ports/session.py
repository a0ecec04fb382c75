"""Session sink protocols, errors and log builders."""

from __future__ import annotations

from enum import StrEnum
from typing import Protocol, runtime_checkable

from pydantic import Field

from vigil_core.ports.dispatch import StageStartRequest
from vigil_schemas.base import BaseSchema
from vigil_schemas.events import (
    PollEvent,
    PollFailedData,
    SessionEvent,
    SessionMountedData,
    SessionUnmountedData,
    TrackEvent,
    TrackStaleData,
    TrackStatusChangedData,
    TriggerDispatchedData,
    TriggerEvent,
    TriggerFailedData,
    TriggerSkippedData,
    TriggerSkipReason,
)
from vigil_schemas.logs import LogEntry
from vigil_schemas.primitives import (
    LogLevel,
    SessionId,
    Timestamp,
    TrackErrorKind,
    TrackId,
)
from vigil_schemas.progress import ProgressUpdate, TrackState
from vigil_schemas.responses import ErrorDetails, ErrorResponse


@runtime_checkable
class LogSinkProtocol(Protocol):
    """Protocol for emitting JSONL log entries."""

    async def emit_log(self, entry: LogEntry) -> None:
        """Emit a log entry."""
        raise NotImplementedError


@runtime_checkable
class ProgressSinkProtocol(Protocol):
    """Protocol for emitting progress updates."""

    async def emit_progress(self, update: ProgressUpdate) -> None:
        """Emit a progress update."""
        raise NotImplementedError


class SessionErrorCode(StrEnum):
    """Categorized error codes for session actions."""

    UNKNOWN_SESSION = "unknown_session"
    UNKNOWN_TRACK = "unknown_track"
    RETRY_UNAVAILABLE = "retry_unavailable"
    NOT_READY = "not_ready"


class SessionErrorDetails(BaseSchema):
    """Detailed session error context."""

    session_id: SessionId | None = Field(None, description="Session involved")
    track_id: str | None = Field(None, description="Track involved")
    valid_tracks: list[str] | None = Field(
        None, description="Tracks observed by the session"
    )


class SessionErrorInfo(BaseSchema):
    """Structured session error data."""

    code: SessionErrorCode = Field(..., description="Error code")
    message: str = Field(..., min_length=1, description="Error message")
    details: SessionErrorDetails | None = Field(None, description="Error details")

    def to_error_response(self) -> ErrorResponse:
        """Convert session error info to standard error response.

        Returns:
            ErrorResponse: Standard response error payload.
        """
        details: ErrorDetails | None = None
        if self.details is not None and self.details.track_id is not None:
            details = ErrorDetails(
                field="track",
                provided=self.details.track_id,
                valid_options=self.details.valid_tracks,
            )
        code_value = getattr(self.code, "value", self.code)
        return ErrorResponse(
            code=str(code_value), message=self.message, details=details
        )


class SessionError(Exception):
    """Session error with structured details."""

    def __init__(self, info: SessionErrorInfo) -> None:
        """Initialize the session error.

        Args:
            info: Structured session error information.
        """
        super().__init__(info.message)
        self.info = info


def build_session_mounted_log(
    timestamp: Timestamp,
    workspace_id: str,
    session_id: SessionId,
    tracks: list[str],
    interval_seconds: float,
) -> LogEntry:
    """Build a log entry for session mount.

    Args:
        timestamp: ISO-8601 timestamp.
        workspace_id: Tenant identifier.
        session_id: Observer session identifier.
        tracks: Tracks observed by the session.
        interval_seconds: Poll interval.

    Returns:
        LogEntry: Structured mount log entry.
    """
    return LogEntry(
        timestamp=timestamp,
        level=LogLevel.INFO,
        event=SessionEvent.MOUNTED,
        workspace_id=workspace_id,
        session_id=session_id,
        track=None,
        message="Progress session mounted",
        data=SessionMountedData(
            tracks=tracks, interval_seconds=interval_seconds
        ).model_dump(exclude_none=True),
    )


def build_session_unmounted_log(
    timestamp: Timestamp,
    workspace_id: str,
    session_id: SessionId,
    elapsed_seconds: float,
    cancelled_dispatches: int,
) -> LogEntry:
    """Build a log entry for session unmount.

    Args:
        timestamp: ISO-8601 timestamp.
        workspace_id: Tenant identifier.
        session_id: Observer session identifier.
        elapsed_seconds: Time since mount.
        cancelled_dispatches: Dispatch tasks cancelled on unmount.

    Returns:
        LogEntry: Structured unmount log entry.
    """
    return LogEntry(
        timestamp=timestamp,
        level=LogLevel.INFO,
        event=SessionEvent.UNMOUNTED,
        workspace_id=workspace_id,
        session_id=session_id,
        track=None,
        message="Progress session unmounted",
        data=SessionUnmountedData(
            elapsed_seconds=elapsed_seconds,
            cancelled_dispatches=cancelled_dispatches,
        ).model_dump(exclude_none=True),
    )


def build_all_complete_log(
    timestamp: Timestamp, workspace_id: str, session_id: SessionId
) -> LogEntry:
    """Build a log entry for the moment every track completes.

    Args:
        timestamp: ISO-8601 timestamp.
        workspace_id: Tenant identifier.
        session_id: Observer session identifier.

    Returns:
        LogEntry: Structured completion log entry.
    """
    return LogEntry(
        timestamp=timestamp,
        level=LogLevel.INFO,
        event=SessionEvent.ALL_COMPLETE,
        workspace_id=workspace_id,
        session_id=session_id,
        track=None,
        message="All tracks complete",
        data=None,
    )


def build_poll_failed_log(
    timestamp: Timestamp,
    workspace_id: str,
    session_id: SessionId,
    consecutive_failures: int,
    reason: str,
) -> LogEntry:
    """Build a log entry for a failed poll tick.

    Args:
        timestamp: ISO-8601 timestamp.
        workspace_id: Tenant identifier.
        session_id: Observer session identifier.
        consecutive_failures: Failures in a row, including this one.
        reason: Failure reason.

    Returns:
        LogEntry: Structured poll failure log entry.
    """
    return LogEntry(
        timestamp=timestamp,
        level=LogLevel.WARN,
        event=PollEvent.FAILED,
        workspace_id=workspace_id,
        session_id=session_id,
        track=None,
        message="Status poll failed",
        data=PollFailedData(
            consecutive_failures=consecutive_failures, reason=reason
        ).model_dump(exclude_none=True),
    )


def build_poll_recovered_log(
    timestamp: Timestamp, workspace_id: str, session_id: SessionId
) -> LogEntry:
    """Build a log entry for the first good poll after failures.

    Args:
        timestamp: ISO-8601 timestamp.
        workspace_id: Tenant identifier.
        session_id: Observer session identifier.

    Returns:
        LogEntry: Structured recovery log entry.
    """
    return LogEntry(
        timestamp=timestamp,
        level=LogLevel.INFO,
        event=PollEvent.RECOVERED,
        workspace_id=workspace_id,
        session_id=session_id,
        track=None,
        message="Status poll recovered",
        data=None,
    )


def build_track_status_changed_log(
    timestamp: Timestamp,
    workspace_id: str,
    session_id: SessionId,
    state: TrackState,
    previous_status: str | None,
) -> LogEntry:
    """Build a log entry for an effective status transition.

    Args:
        timestamp: ISO-8601 timestamp.
        workspace_id: Tenant identifier.
        session_id: Observer session identifier.
        state: New track state.
        previous_status: Effective status before this tick.

    Returns:
        LogEntry: Structured transition log entry.
    """
    return LogEntry(
        timestamp=timestamp,
        level=LogLevel.INFO,
        event=TrackEvent.STATUS_CHANGED,
        workspace_id=workspace_id,
        session_id=session_id,
        track=state.track_id,
        message=f"{state.title}: {state.phase_label}",
        data=TrackStatusChangedData(
            previous_status=previous_status,
            effective_status=state.effective_status,
            declared_status=state.declared_status,
            progress_percent=state.progress_percent,
        ).model_dump(exclude_none=True),
    )


def build_track_stale_log(
    timestamp: Timestamp,
    workspace_id: str,
    session_id: SessionId,
    track_id: TrackId,
    declared_status: str,
    updated_at: str | None,
) -> LogEntry:
    """Build a log entry for a track failed by inactivity.

    Args:
        timestamp: ISO-8601 timestamp.
        workspace_id: Tenant identifier.
        session_id: Observer session identifier.
        track_id: Stale track.
        declared_status: Status the record froze at.
        updated_at: Last record update.

    Returns:
        LogEntry: Structured staleness log entry.
    """
    return LogEntry(
        timestamp=timestamp,
        level=LogLevel.WARN,
        event=TrackEvent.STALE,
        workspace_id=workspace_id,
        session_id=session_id,
        track=track_id,
        message="Track timed out without a status update",
        data=TrackStaleData(
            declared_status=declared_status,
            updated_at=updated_at,
            error_kind=TrackErrorKind.STALE,
        ).model_dump(exclude_none=True),
    )


def build_gate_opened_log(
    timestamp: Timestamp,
    workspace_id: str,
    session_id: SessionId,
    track_id: TrackId,
) -> LogEntry:
    """Build a log entry for a dependency gate opening.

    Args:
        timestamp: ISO-8601 timestamp.
        workspace_id: Tenant identifier.
        session_id: Observer session identifier.
        track_id: Downstream track whose gate opened.

    Returns:
        LogEntry: Structured gate log entry.
    """
    return LogEntry(
        timestamp=timestamp,
        level=LogLevel.INFO,
        event=TrackEvent.GATE_OPENED,
        workspace_id=workspace_id,
        session_id=session_id,
        track=track_id,
        message="Upstream complete, gate opened",
        data=None,
    )


def build_track_retry_log(
    timestamp: Timestamp,
    workspace_id: str,
    session_id: SessionId,
    track_id: TrackId,
) -> LogEntry:
    """Build a log entry for a user retry.

    Args:
        timestamp: ISO-8601 timestamp.
        workspace_id: Tenant identifier.
        session_id: Observer session identifier.
        track_id: Retried track.

    Returns:
        LogEntry: Structured retry log entry.
    """
    return LogEntry(
        timestamp=timestamp,
        level=LogLevel.INFO,
        event=TrackEvent.RETRY_REQUESTED,
        workspace_id=workspace_id,
        session_id=session_id,
        track=track_id,
        message="Track retry requested",
        data=None,
    )


def build_trigger_dispatched_log(
    timestamp: Timestamp,
    session_id: SessionId,
    request: StageStartRequest,
    manual: bool,
) -> LogEntry:
    """Build a log entry for a stage-start dispatch.

    Args:
        timestamp: ISO-8601 timestamp.
        session_id: Observer session identifier.
        request: Stage-start request that was sent.
        manual: Whether an explicit retry fired it.

    Returns:
        LogEntry: Structured dispatch log entry.
    """
    return LogEntry(
        timestamp=timestamp,
        level=LogLevel.INFO,
        event=TriggerEvent.DISPATCHED,
        workspace_id=request.workspace_id,
        session_id=session_id,
        track=request.track_id,
        message=f"Stage start dispatched: {request.workflow}",
        data=TriggerDispatchedData(
            workflow=request.workflow,
            callback_url=request.callback_url,
            manual=manual,
        ).model_dump(exclude_none=True),
    )


def build_trigger_skipped_log(
    timestamp: Timestamp,
    workspace_id: str,
    session_id: SessionId,
    track_id: TrackId,
    reason: TriggerSkipReason,
) -> LogEntry:
    """Build a log entry for an armed trigger that did not fire.

    Args:
        timestamp: ISO-8601 timestamp.
        workspace_id: Tenant identifier.
        session_id: Observer session identifier.
        track_id: Track whose trigger was skipped.
        reason: Skip reason.

    Returns:
        LogEntry: Structured skip log entry.
    """
    return LogEntry(
        timestamp=timestamp,
        level=LogLevel.INFO,
        event=TriggerEvent.SKIPPED,
        workspace_id=workspace_id,
        session_id=session_id,
        track=track_id,
        message="Stage start skipped",
        data=TriggerSkippedData(reason=reason).model_dump(exclude_none=True),
    )


def build_trigger_failed_log(
    timestamp: Timestamp,
    workspace_id: str,
    session_id: SessionId,
    track_id: TrackId,
    workflow: str,
    reason: str,
) -> LogEntry:
    """Build a log entry for a failed stage-start dispatch.

    Args:
        timestamp: ISO-8601 timestamp.
        workspace_id: Tenant identifier.
        session_id: Observer session identifier.
        track_id: Track whose dispatch failed.
        workflow: Webhook path segment.
        reason: Failure reason.

    Returns:
        LogEntry: Structured dispatch failure log entry.
    """
    return LogEntry(
        timestamp=timestamp,
        level=LogLevel.ERROR,
        event=TriggerEvent.FAILED,
        workspace_id=workspace_id,
        session_id=session_id,
        track=track_id,
        message="Stage start failed",
        data=TriggerFailedData(workflow=workflow, reason=reason).model_dump(
            exclude_none=True
        ),
    )
