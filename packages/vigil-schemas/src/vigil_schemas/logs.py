"""JSONL log entry schema for observer events."""

from __future__ import annotations

from pydantic import Field

from vigil_schemas.base import BaseSchema
from vigil_schemas.primitives import (
    EventName,
    JsonValue,
    LogLevelValue,
    SessionId,
    Timestamp,
    TrackIdValue,
    WorkspaceId,
)


class LogEntry(BaseSchema):
    """Single log line in JSONL format."""

    timestamp: Timestamp = Field(
        ..., description="ISO-8601 timestamp for the log entry"
    )
    level: LogLevelValue = Field(..., description="Log level")
    event: EventName = Field(..., description="Event name")
    workspace_id: WorkspaceId = Field(..., description="Tenant identifier")
    session_id: SessionId | None = Field(
        None, description="Observer session identifier"
    )
    track: TrackIdValue | None = Field(None, description="Track if applicable")
    message: str = Field(..., min_length=1, description="Log message")
    data: dict[str, JsonValue] | None = Field(None, description="Structured event data")
