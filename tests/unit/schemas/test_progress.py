"""Unit tests for progress schemas."""

import pytest
from pydantic import ValidationError

from vigil_schemas.primitives import StageBadge, TrackErrorKind, TrackId
from vigil_schemas.progress import OnboardingProgress, TrackState
from vigil_schemas.records import SourceSnapshot, WorkflowStatusRecord


def _state(track_id: str = "discovery", **overrides: object) -> TrackState:
    payload: dict[str, object] = {
        "track_id": track_id,
        "title": "Competitor discovery",
        "effective_status": "discovering",
        "phase_index": 2,
        "phase_label": "Finding competitors",
        "badge": "in_progress",
        "progress_percent": 33.3,
    }
    payload.update(overrides)
    return TrackState.model_validate(payload)


def test_track_state_accepts_enum_strings() -> None:
    """Badge and track ids may be given as their string values."""
    state = _state()
    assert state.track_id == TrackId.DISCOVERY
    assert state.badge == StageBadge.IN_PROGRESS
    assert state.retry_available is False
    assert state.gate_open is True


def test_track_state_requires_error_kind_with_error() -> None:
    """Error text and error kind are set together."""
    with pytest.raises(ValidationError, match="set together"):
        _state(error="boom")
    state = _state(
        effective_status="failed",
        badge="error",
        error="boom",
        error_kind="declared",
    )
    assert state.error_kind == TrackErrorKind.DECLARED


def test_progress_percent_is_bounded() -> None:
    """Bar values stay within 0..100."""
    with pytest.raises(ValidationError):
        _state(progress_percent=120.0)


def test_onboarding_progress_rejects_duplicate_tracks() -> None:
    """A track appears once per progress."""
    with pytest.raises(ValidationError, match="unique"):
        OnboardingProgress(
            workspace_id="ws-acme",
            tracks=[_state(), _state()],
            all_complete=False,
            computed_at="2026-03-02T09:30:00Z",
        )


def test_onboarding_progress_track_lookup() -> None:
    """Track lookup accepts enum members and strings."""
    progress = OnboardingProgress(
        workspace_id="ws-acme",
        tracks=[_state(), _state("email_import", title="Email classification")],
        all_complete=False,
        computed_at="2026-03-02T09:30:00Z",
    )
    assert progress.can_skip is True
    assert progress.track(TrackId.EMAIL_IMPORT) is progress.tracks[1]
    assert progress.track("scrape") is None


def test_status_record_treats_null_details_as_empty() -> None:
    """Backend rows with null details validate."""
    record = WorkflowStatusRecord.model_validate(
        {
            "workspace_id": "ws-acme",
            "workflow_type": "email_import",
            "status": "pending",
            "details": None,
            "updated_at": "2026-03-02T09:29:00.123456+00:00",
        }
    )
    assert record.details == {}
    snapshot = SourceSnapshot(
        workspace_id="ws-acme",
        records={"email_import": record},
        fetched_at="2026-03-02T09:30:00Z",
    )
    assert snapshot.record_for("email_import") is record
    assert snapshot.record_for("competitor_scrape") is None
