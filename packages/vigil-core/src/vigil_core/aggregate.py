"""Completion aggregation across tracks."""

from __future__ import annotations

from vigil_schemas.progress import TrackState
from vigil_schemas.tracks import TrackRegistry


def all_tracks_complete(registry: TrackRegistry, states: list[TrackState]) -> bool:
    """Return True when every registered track reached a success status.

    Args:
        registry: Registered tracks.
        states: Track states for one tick.

    Returns:
        bool: Whether forward navigation may be enabled.
    """
    by_track = {state.track_id: state for state in states}
    for track in registry.tracks:
        state = by_track.get(track.track_id)
        if state is None or state.effective_status not in track.success_statuses:
            return False
    return True
