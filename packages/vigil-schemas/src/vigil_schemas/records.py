"""Backend status records and the per-tick source snapshot."""

from __future__ import annotations

from pydantic import Field, field_validator

from vigil_schemas.base import BaseSchema
from vigil_schemas.primitives import (
    CountKey,
    JsonValue,
    StatusKey,
    Timestamp,
    WorkspaceId,
)


class WorkflowStatusRecord(BaseSchema):
    """Status row written by an external background job."""

    workspace_id: WorkspaceId = Field(..., description="Tenant identifier")
    workflow_type: StatusKey = Field(..., description="Backend workflow type")
    status: StatusKey = Field(..., description="Declared phase key")
    details: dict[str, JsonValue] = Field(
        default_factory=dict, description="Workflow-specific details bag"
    )
    updated_at: Timestamp | None = Field(
        None, description="Last update timestamp used for staleness"
    )

    @field_validator("details", mode="before")
    @classmethod
    def _coerce_null_details(cls, value: object) -> object:
        if value is None:
            return {}
        return value


class SourceSnapshot(BaseSchema):
    """Everything read from the backend for one poll tick."""

    workspace_id: WorkspaceId = Field(..., description="Tenant identifier")
    records: dict[str, WorkflowStatusRecord] = Field(
        default_factory=dict, description="Latest status record by workflow type"
    )
    counts: dict[CountKey, int] = Field(
        default_factory=dict, description="Corroborating entity counts by key"
    )
    signals: dict[str, JsonValue] = Field(
        default_factory=dict,
        description="Flattened auxiliary progress columns keyed prefix.column",
    )
    fetched_at: Timestamp = Field(..., description="When the snapshot was read")

    def record_for(self, workflow_type: str) -> WorkflowStatusRecord | None:
        """Return the status record for a workflow type, if any.

        Args:
            workflow_type: Backend workflow type.

        Returns:
            WorkflowStatusRecord | None: The record, or None when not started.
        """
        return self.records.get(workflow_type)
