"""Inactivity detection for status records."""

from __future__ import annotations

from datetime import UTC, datetime

from vigil_schemas.records import WorkflowStatusRecord
from vigil_schemas.tracks import TrackDefinition

DEFAULT_STALE_AFTER_SECONDS = 600.0
STALE_ERROR_MESSAGE = "Timed out: the workflow may have failed. Please retry."


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp, assuming UTC when no offset is given.

    Args:
        value: Timestamp string.

    Returns:
        datetime: Timezone-aware datetime.
    """
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed


def seconds_since(value: str, now: datetime) -> float:
    """Return seconds elapsed between a timestamp and now."""
    return (now - parse_timestamp(value)).total_seconds()


def is_stale(
    track: TrackDefinition,
    record: WorkflowStatusRecord | None,
    now: datetime,
    stale_after_seconds: float = DEFAULT_STALE_AFTER_SECONDS,
) -> bool:
    """Check whether an active record has stopped updating.

    Terminal statuses and statuses waiting on the user are never stale.

    Args:
        track: Track definition supplying the exempt statuses.
        record: Latest status record, if any.
        now: Current time.
        stale_after_seconds: Inactivity threshold.

    Returns:
        bool: True when the record is active and older than the threshold.
    """
    if record is None or record.updated_at is None:
        return False
    if record.status in track.stale_exempt_statuses:
        return False
    return seconds_since(record.updated_at, now) > stale_after_seconds
