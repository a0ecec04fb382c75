"""In-memory status backend for tests and local runs."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime

from vigil_core.ports.source import (
    SourceError,
    SourceErrorCode,
    SourceErrorInfo,
    StatusSourceProtocol,
    StatusWrite,
    StatusWriterProtocol,
)
from vigil_schemas.primitives import JsonValue, Timestamp
from vigil_schemas.records import SourceSnapshot, WorkflowStatusRecord


def _now_timestamp() -> Timestamp:
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


class InMemoryStatusSource(StatusSourceProtocol, StatusWriterProtocol):
    """Status records, counts and signals held in process memory."""

    def __init__(self, clock: Callable[[], Timestamp] | None = None) -> None:
        """Initialize an empty backend.

        Args:
            clock: Timestamp factory for writes and snapshots.
        """
        self._clock = clock or _now_timestamp
        self._records: dict[tuple[str, str], WorkflowStatusRecord] = {}
        self._counts: dict[str, dict[str, int]] = {}
        self._signals: dict[str, dict[str, JsonValue]] = {}
        self._failures_remaining = 0
        self.fetch_count = 0
        self.writes: list[StatusWrite] = []

    def set_status(
        self,
        workspace_id: str,
        workflow_type: str,
        status: str,
        *,
        details: dict[str, JsonValue] | None = None,
        updated_at: Timestamp | None = None,
    ) -> WorkflowStatusRecord:
        """Store a status record, replacing any previous one for the type.

        Returns:
            WorkflowStatusRecord: The stored record.
        """
        record = WorkflowStatusRecord(
            workspace_id=workspace_id,
            workflow_type=workflow_type,
            status=status,
            details=details or {},
            updated_at=updated_at or self._clock(),
        )
        self._records[(workspace_id, workflow_type)] = record
        return record

    def clear_status(self, workspace_id: str, workflow_type: str) -> None:
        """Remove the status record for a workflow type."""
        self._records.pop((workspace_id, workflow_type), None)

    def set_count(self, workspace_id: str, key: str, value: int) -> None:
        """Store a corroborating count."""
        self._counts.setdefault(workspace_id, {})[key] = value

    def set_signal(self, workspace_id: str, key: str, value: JsonValue) -> None:
        """Store a flattened auxiliary signal."""
        self._signals.setdefault(workspace_id, {})[key] = value

    def fail_next(self, times: int = 1) -> None:
        """Make the next fetches raise a request failure."""
        self._failures_remaining = times

    async def fetch_snapshot(self, workspace_id: str) -> SourceSnapshot:
        """Return the stored state for a workspace.

        Raises:
            SourceError: While injected failures remain.
        """
        self.fetch_count += 1
        if self._failures_remaining > 0:
            self._failures_remaining -= 1
            raise SourceError(
                SourceErrorInfo(
                    code=SourceErrorCode.REQUEST_FAILED,
                    message="Injected fetch failure",
                )
            )
        records = {
            workflow_type: record
            for (owner, workflow_type), record in self._records.items()
            if owner == workspace_id
        }
        return SourceSnapshot(
            workspace_id=workspace_id,
            records=records,
            counts=dict(self._counts.get(workspace_id, {})),
            signals=dict(self._signals.get(workspace_id, {})),
            fetched_at=self._clock(),
        )

    async def write_status(self, record: StatusWrite) -> None:
        """Upsert a status record."""
        self.writes.append(record)
        self.set_status(
            record.workspace_id,
            record.workflow_type,
            record.status,
            details=dict(record.details),
            updated_at=record.updated_at,
        )
