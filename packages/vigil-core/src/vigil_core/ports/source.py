"""Status source protocols and errors."""

from __future__ import annotations

from collections.abc import AsyncIterator
from enum import StrEnum
from typing import Protocol, runtime_checkable

from pydantic import Field

from vigil_schemas.base import BaseSchema
from vigil_schemas.primitives import JsonValue, StatusKey, Timestamp, WorkspaceId
from vigil_schemas.records import SourceSnapshot
from vigil_schemas.responses import ErrorDetails, ErrorResponse


class ChangeNotification(BaseSchema):
    """Push hint that something changed for a workspace."""

    workspace_id: WorkspaceId = Field(..., description="Tenant identifier")
    table: str | None = Field(None, description="Table that changed, if known")
    received_at: Timestamp = Field(..., description="When the hint arrived")


class StatusWrite(BaseSchema):
    """Status record upsert written by the observer."""

    workspace_id: WorkspaceId = Field(..., description="Tenant identifier")
    workflow_type: StatusKey = Field(..., description="Backend workflow type")
    status: StatusKey = Field(..., description="Status to record")
    details: dict[str, JsonValue] = Field(
        default_factory=dict, description="Details bag to store"
    )
    updated_at: Timestamp = Field(..., description="Write timestamp")


@runtime_checkable
class StatusSourceProtocol(Protocol):
    """Protocol for reading status records and corroborating counts."""

    async def fetch_snapshot(self, workspace_id: str) -> SourceSnapshot:
        """Fetch every status record and count for a workspace."""
        raise NotImplementedError


@runtime_checkable
class StatusWriterProtocol(Protocol):
    """Protocol for upserting status records."""

    async def write_status(self, record: StatusWrite) -> None:
        """Upsert a status record keyed by workspace and workflow type."""
        raise NotImplementedError


@runtime_checkable
class ChangeFeedProtocol(Protocol):
    """Protocol for realtime change notifications."""

    def subscribe(self, workspace_id: str) -> AsyncIterator[ChangeNotification]:
        """Yield notifications for a workspace until cancelled."""
        raise NotImplementedError


class SourceErrorCode(StrEnum):
    """Error codes for status source failures."""

    REQUEST_FAILED = "request_failed"
    INVALID_PAYLOAD = "invalid_payload"
    WRITE_FAILED = "write_failed"


class SourceErrorDetails(BaseSchema):
    """Detailed status source error context."""

    table: str | None = Field(None, description="Table involved")
    status_code: int | None = Field(None, description="HTTP status code")
    reason: str | None = Field(None, description="Additional error context")


class SourceErrorInfo(BaseSchema):
    """Structured status source error data."""

    code: SourceErrorCode = Field(..., description="Error code")
    message: str = Field(..., min_length=1, description="Error message")
    details: SourceErrorDetails | None = Field(None, description="Error details")

    def to_error_response(self) -> ErrorResponse:
        """Convert source error info to standard error response.

        Returns:
            ErrorResponse: Standard response error payload.
        """
        details: ErrorDetails | None = None
        if self.details is not None and self.details.table is not None:
            details = ErrorDetails(
                field="table", provided=self.details.table, valid_options=None
            )
        code_value = getattr(self.code, "value", self.code)
        return ErrorResponse(
            code=str(code_value), message=self.message, details=details
        )


class SourceError(Exception):
    """Status source error with structured details."""

    def __init__(self, info: SourceErrorInfo) -> None:
        """Initialize the source error.

        Args:
            info: Structured source error information.
        """
        super().__init__(info.message)
        self.info = info
