"""Unit tests for track definitions and the registry."""

import pytest
from pydantic import ValidationError

from vigil_schemas.primitives import CountSource, TrackId
from vigil_schemas.tracks import (
    DEFAULT_TRACKS,
    DISCOVERY_TRACK,
    EMAIL_IMPORT_TRACK,
    SCRAPE_TRACK,
    TRACK_CATALOG,
    WEBSITE_TRACK,
    CountRef,
    PhaseDefinition,
    TrackDefinition,
    TrackRegistry,
    TriggerDefinition,
    resolve_tracks,
)


def _phases(*keys: str) -> list[PhaseDefinition]:
    return [PhaseDefinition(key=key, label=key.title()) for key in keys]


def test_count_ref_parse_splits_source_and_key() -> None:
    """Dotted references keep everything after the first dot as the key."""
    ref = CountRef.parse("signals.email.estimated_total_emails")
    assert ref.source == CountSource.SIGNALS
    assert ref.key == "email.estimated_total_emails"


def test_count_ref_parse_rejects_unknown_source() -> None:
    """Unknown source prefixes are rejected."""
    with pytest.raises(ValueError):
        CountRef.parse("rows.total")


def test_count_ref_parse_requires_key() -> None:
    """A bare source without a key is rejected."""
    with pytest.raises(ValueError, match="source prefix"):
        CountRef.parse("counts")


def test_default_registry_orders_upstream_first() -> None:
    """Discovery precedes the scrape track that depends on it."""
    ids = [track.track_id for track in DEFAULT_TRACKS.tracks]
    assert ids == [TrackId.DISCOVERY, TrackId.SCRAPE, TrackId.EMAIL_IMPORT]
    assert SCRAPE_TRACK.upstream == TrackId.DISCOVERY


def test_track_properties() -> None:
    """Derived properties read from the phase table."""
    assert DISCOVERY_TRACK.first_status == "pending"
    assert DISCOVERY_TRACK.success_status == "complete"
    assert EMAIL_IMPORT_TRACK.terminal_statuses == {
        "complete",
        "classification_complete",
        "failed",
    }
    assert SCRAPE_TRACK.phase_keys[0] == "waiting"


def test_track_rejects_status_missing_from_phase_table() -> None:
    """Referenced statuses must exist in the phase table."""
    with pytest.raises(ValidationError, match="missing from phase table"):
        TrackDefinition(
            track_id=TrackId.DISCOVERY,
            title="Discovery",
            workflow_type="competitor_discovery",
            phases=_phases("pending", "complete", "failed"),
            success_statuses=["complete"],
            not_started_statuses=["pending"],
            in_progress_status="running",
        )


def test_track_rejects_duplicate_phase_keys() -> None:
    """Phase keys are unique."""
    with pytest.raises(ValidationError, match="unique"):
        TrackDefinition(
            track_id=TrackId.DISCOVERY,
            title="Discovery",
            workflow_type="competitor_discovery",
            phases=_phases("pending", "pending", "complete", "failed"),
            success_statuses=["complete"],
            not_started_statuses=["pending"],
        )


def test_registry_rejects_upstream_registered_later() -> None:
    """An upstream track must be registered before its dependents."""
    with pytest.raises(ValidationError, match="registered before"):
        TrackRegistry(tracks=[SCRAPE_TRACK, DISCOVERY_TRACK])


def test_registry_rejects_duplicate_ids() -> None:
    """Track ids are unique."""
    with pytest.raises(ValidationError, match="Duplicate track id"):
        TrackRegistry(tracks=[DISCOVERY_TRACK, DISCOVERY_TRACK])


def test_registry_get_and_select() -> None:
    """Lookups accept raw strings and selection keeps order."""
    assert DEFAULT_TRACKS.get("email_import") is EMAIL_IMPORT_TRACK
    assert DEFAULT_TRACKS.get("unknown") is None
    selected = DEFAULT_TRACKS.select([TrackId.EMAIL_IMPORT, TrackId.DISCOVERY])
    assert [track.track_id for track in selected.tracks] == [
        TrackId.DISCOVERY,
        TrackId.EMAIL_IMPORT,
    ]


def test_track_definition_accepts_raw_strings() -> None:
    """Enum-valued fields accept their string values."""
    track = TrackDefinition.model_validate(
        {
            "track_id": "email_import",
            "title": "Email",
            "workflow_type": "email_import",
            "phases": [
                {"key": "pending", "label": "Queued"},
                {"key": "complete", "label": "Done"},
                {"key": "failed", "label": "Failed"},
            ],
            "success_statuses": ["complete"],
            "not_started_statuses": ["pending"],
            "done": [{"source": "counts", "key": "emails_classified"}],
        }
    )
    assert track.track_id == TrackId.EMAIL_IMPORT
    assert track.done[0].source == CountSource.COUNTS


def test_handoff_status_must_mark_stage_started() -> None:
    """A handoff record that still reads as not started is rejected."""
    with pytest.raises(ValidationError, match="must mark the stage as started"):
        TrackDefinition(
            track_id=TrackId.EMAIL_IMPORT,
            title="Email",
            workflow_type="email_import",
            phases=_phases("pending", "dispatched", "complete", "failed"),
            success_statuses=["complete"],
            not_started_statuses=["pending"],
            trigger=TriggerDefinition(
                workflow="email-classification",
                callback_path="n8n-email-callback",
                handoff_status="pending",
                handoff_message="Email classification queued",
            ),
        )


def test_default_handoff_statuses_follow_the_started_phases() -> None:
    """Each stage-start call records the phase its job writes on start."""
    handoffs = {
        track.track_id: track.trigger.handoff_status
        for track in DEFAULT_TRACKS.tracks
        if track.trigger is not None
    }
    assert handoffs == {
        TrackId.DISCOVERY: "discovering",
        TrackId.SCRAPE: "scraping",
        TrackId.EMAIL_IMPORT: "dispatched",
    }


def test_wait_statuses_are_exempt_from_staleness() -> None:
    """Review waits join the terminal statuses in the staleness exemption."""
    assert SCRAPE_TRACK.wait_statuses == ["review_ready"]
    assert "review_ready" in SCRAPE_TRACK.not_started_statuses
    assert SCRAPE_TRACK.stale_exempt_statuses == {"complete", "failed", "review_ready"}


def test_catalog_offers_website_track_outside_defaults() -> None:
    """The website job is selectable but not part of the default screen."""
    assert DEFAULT_TRACKS.get(TrackId.WEBSITE) is None
    assert TRACK_CATALOG.get(TrackId.WEBSITE) is WEBSITE_TRACK
    assert resolve_tracks(None) is DEFAULT_TRACKS
    selected = resolve_tracks([TrackId.WEBSITE, TrackId.EMAIL_IMPORT])
    assert [track.track_id for track in selected.tracks] == [
        TrackId.EMAIL_IMPORT,
        TrackId.WEBSITE,
    ]
