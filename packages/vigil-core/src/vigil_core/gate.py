"""Dependency gate between upstream and downstream tracks."""

from __future__ import annotations

from collections.abc import Mapping

from vigil_core.inference import InferenceResult, InferenceRule
from vigil_core.phases import WAITING_STATUS
from vigil_schemas.tracks import TrackDefinition, TrackRegistry


def gate_is_open(
    track: TrackDefinition,
    effective_by_track: Mapping[str, str],
    registry: TrackRegistry,
) -> bool:
    """Check whether a track's upstream dependency reached success.

    Args:
        track: Downstream track definition.
        effective_by_track: Effective statuses already computed this tick.
        registry: Registry used to look up the upstream definition.

    Returns:
        bool: True for root tracks or when the upstream succeeded.
    """
    if track.upstream is None:
        return True
    upstream = registry.get(track.upstream)
    if upstream is None:
        return False
    return effective_by_track.get(upstream.track_id) in upstream.success_statuses


def apply_gate(result: InferenceResult, gate_open: bool) -> InferenceResult:
    """Pin a gated track to the synthetic waiting phase.

    Leftover records from a previous run, including failures, are hidden
    while the gate is closed.

    Args:
        result: Inference output for the downstream track.
        gate_open: Whether the upstream succeeded.

    Returns:
        InferenceResult: The inference output, or ``waiting`` when gated.
    """
    if gate_open:
        return result
    return InferenceResult(status=WAITING_STATUS, rule=InferenceRule.GATED)
