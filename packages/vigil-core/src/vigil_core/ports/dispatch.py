"""Stage-start dispatch protocol and errors."""

from __future__ import annotations

from enum import StrEnum
from typing import Protocol, runtime_checkable

from pydantic import Field

from vigil_schemas.base import BaseSchema
from vigil_schemas.primitives import StatusKey, TrackIdValue, WorkspaceId
from vigil_schemas.responses import ErrorDetails, ErrorResponse


class StageStartRequest(BaseSchema):
    """Outbound stage-start call and its handoff record."""

    workspace_id: WorkspaceId = Field(..., description="Tenant identifier")
    track_id: TrackIdValue = Field(..., description="Track being started")
    workflow: str = Field(..., min_length=1, description="Webhook path segment")
    workflow_type: StatusKey = Field(..., description="Handoff record type")
    callback_url: str = Field(
        ..., min_length=1, description="Where the job reports completion"
    )
    handoff_status: StatusKey = Field(..., description="Handoff record status")
    handoff_message: str = Field(..., min_length=1, description="Handoff message")


@runtime_checkable
class StageStarterProtocol(Protocol):
    """Protocol for firing external stage-start calls."""

    async def start_stage(self, request: StageStartRequest) -> None:
        """Fire the stage-start call and write the handoff record."""
        raise NotImplementedError


class DispatchErrorCode(StrEnum):
    """Error codes for stage-start failures."""

    NOT_CONFIGURED = "not_configured"
    REQUEST_FAILED = "request_failed"
    REJECTED = "rejected"
    HANDOFF_FAILED = "handoff_failed"


class DispatchErrorDetails(BaseSchema):
    """Detailed dispatch error context."""

    track_id: TrackIdValue | None = Field(None, description="Track being started")
    workflow: str | None = Field(None, description="Webhook path segment")
    status_code: int | None = Field(None, description="HTTP status code")
    reason: str | None = Field(None, description="Additional error context")


class DispatchErrorInfo(BaseSchema):
    """Structured dispatch error data."""

    code: DispatchErrorCode = Field(..., description="Error code")
    message: str = Field(..., min_length=1, description="Error message")
    details: DispatchErrorDetails | None = Field(None, description="Error details")

    def to_error_response(self) -> ErrorResponse:
        """Convert dispatch error info to standard error response.

        Returns:
            ErrorResponse: Standard response error payload.
        """
        details: ErrorDetails | None = None
        if self.details is not None and self.details.workflow is not None:
            details = ErrorDetails(
                field="workflow", provided=self.details.workflow, valid_options=None
            )
        code_value = getattr(self.code, "value", self.code)
        return ErrorResponse(
            code=str(code_value), message=self.message, details=details
        )


class DispatchError(Exception):
    """Dispatch error with structured details."""

    def __init__(self, info: DispatchErrorInfo) -> None:
        """Initialize the dispatch error.

        Args:
            info: Structured dispatch error information.
        """
        super().__init__(info.message)
        self.info = info
