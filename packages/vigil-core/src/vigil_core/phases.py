"""Phase table lookups."""

from __future__ import annotations

from vigil_schemas.tracks import TrackDefinition

WAITING_STATUS = "waiting"
WAITING_LABEL = "Waiting"


def phase_index(track: TrackDefinition, status: str) -> int:
    """Return the index of a status in the track's phase table.

    Unknown statuses map to 0 so that phases added by external jobs never
    break the view.

    Args:
        track: Track definition.
        status: Status string to look up.

    Returns:
        int: Zero-based phase index.
    """
    keys = track.phase_keys
    if status in keys:
        return keys.index(status)
    return 0


def phase_label(track: TrackDefinition, status: str) -> str:
    """Return the display label for a status.

    Args:
        track: Track definition.
        status: Status string to look up.

    Returns:
        str: Phase label.
    """
    if status == WAITING_STATUS and status not in track.phase_keys:
        return WAITING_LABEL
    return track.phases[phase_index(track, status)].label


def total_phases(track: TrackDefinition) -> int:
    """Return the phase count used for percentages (failure excluded)."""
    return len(track.phases) - 1
