"""Unit tests for the dependency gate."""

from vigil_core.gate import apply_gate, gate_is_open
from vigil_core.inference import InferenceResult, InferenceRule
from vigil_schemas.primitives import TrackErrorKind
from vigil_schemas.tracks import (
    DEFAULT_TRACKS,
    DISCOVERY_TRACK,
    EMAIL_IMPORT_TRACK,
    SCRAPE_TRACK,
    TrackRegistry,
)


def test_root_tracks_are_always_open() -> None:
    """Tracks without an upstream are never gated."""
    assert gate_is_open(DISCOVERY_TRACK, {}, DEFAULT_TRACKS)
    assert gate_is_open(EMAIL_IMPORT_TRACK, {}, DEFAULT_TRACKS)


def test_gate_opens_only_on_upstream_success() -> None:
    """Any non-success upstream status keeps the gate closed."""
    for status in ("pending", "discovering", "health_check_complete", "failed"):
        assert not gate_is_open(SCRAPE_TRACK, {"discovery": status}, DEFAULT_TRACKS)
    assert gate_is_open(SCRAPE_TRACK, {"discovery": "complete"}, DEFAULT_TRACKS)


def test_gate_closed_when_upstream_not_registered() -> None:
    """A dependent without its upstream in the registry stays closed."""
    registry = TrackRegistry(tracks=[EMAIL_IMPORT_TRACK])
    assert not gate_is_open(SCRAPE_TRACK, {"discovery": "complete"}, registry)


def test_closed_gate_hides_leftover_failure() -> None:
    """A gated track shows waiting even if a stale failure is on record."""
    failed = InferenceResult(
        status="failed",
        rule=InferenceRule.STALE,
        error="Timed out",
        error_kind=TrackErrorKind.STALE,
    )
    gated = apply_gate(failed, gate_open=False)
    assert gated.status == "waiting"
    assert gated.rule == InferenceRule.GATED
    assert gated.error is None
    assert apply_gate(failed, gate_open=True) is failed
