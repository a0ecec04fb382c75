"""API response envelope schemas for CLI and API output."""

from __future__ import annotations

from pydantic import Field

from vigil_schemas.base import BaseSchema
from vigil_schemas.primitives import (
    RequestId,
    SessionId,
    Timestamp,
    TrackIdValue,
    WorkspaceId,
)
from vigil_schemas.progress import OnboardingProgress


class MetaInfo(BaseSchema):
    """Metadata for API responses."""

    timestamp: Timestamp = Field(..., description="ISO-8601 response timestamp")
    request_id: RequestId | None = Field(
        None, description="Optional request identifier"
    )


class ErrorDetails(BaseSchema):
    """Detailed error context for responses."""

    field: str | None = Field(None, description="Field name if applicable")
    provided: str | None = Field(None, description="Provided value")
    valid_options: list[str] | None = Field(
        None, description="Valid options if applicable"
    )


class ErrorResponse(BaseSchema):
    """Error information in response."""

    code: str = Field(..., min_length=1, description="Error code")
    message: str = Field(..., min_length=1, description="Error message")
    details: ErrorDetails | None = Field(None, description="Optional error details")


class ApiResponse[ResponseData](BaseSchema):
    """Generic API response envelope."""

    data: ResponseData | None = Field(
        None, description="Success payload, null on error"
    )
    error: ErrorResponse | None = Field(
        None, description="Error information, null on success"
    )
    meta: MetaInfo = Field(..., description="Response metadata")


class OnboardingStatusResult(BaseSchema):
    """Result payload for status queries."""

    workspace_id: WorkspaceId = Field(..., description="Tenant identifier")
    session_id: SessionId | None = Field(None, description="Observer session")
    updated_at: Timestamp = Field(..., description="Status snapshot timestamp")
    elapsed_seconds: float = Field(..., ge=0, description="Time since mount")
    can_continue: bool = Field(..., description="Continue action is enabled")
    can_skip: bool = Field(..., description="Skip action is available")
    progress: OnboardingProgress | None = Field(
        None, description="Latest reduced progress, null before the first tick"
    )


class SessionResult(BaseSchema):
    """Result payload for session mount and unmount."""

    session_id: SessionId = Field(..., description="Observer session")
    workspace_id: WorkspaceId = Field(..., description="Tenant identifier")
    mounted: bool = Field(..., description="Session is currently mounted")


class RetryResult(BaseSchema):
    """Result payload for retry actions."""

    session_id: SessionId = Field(..., description="Observer session")
    track_id: TrackIdValue = Field(..., description="Retried track")
    dispatched: bool = Field(..., description="A stage-start call was scheduled")


class AdvanceResult(BaseSchema):
    """Result payload for continue and skip actions."""

    session_id: SessionId = Field(..., description="Observer session")
    skipped: bool = Field(..., description="User skipped ahead")
    all_complete: bool = Field(..., description="Every track had completed")
