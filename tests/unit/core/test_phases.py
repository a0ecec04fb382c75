"""Unit tests for phase table lookups."""

from vigil_core.phases import phase_index, phase_label, total_phases
from vigil_schemas.tracks import DISCOVERY_TRACK, EMAIL_IMPORT_TRACK, SCRAPE_TRACK


def test_phase_index_of_known_status() -> None:
    """Known statuses map to their table position."""
    assert phase_index(DISCOVERY_TRACK, "pending") == 0
    assert phase_index(DISCOVERY_TRACK, "discovering") == 2
    assert phase_index(SCRAPE_TRACK, "scraping") == 3


def test_unknown_status_maps_to_first_phase() -> None:
    """Statuses introduced by external jobs never break the lookup."""
    assert phase_index(DISCOVERY_TRACK, "reticulating_splines") == 0
    assert phase_label(DISCOVERY_TRACK, "reticulating_splines") == "Queued"


def test_phase_label() -> None:
    """Labels come from the phase table."""
    assert phase_label(EMAIL_IMPORT_TRACK, "classifying") == "Classifying emails"
    assert phase_label(SCRAPE_TRACK, "waiting") == "Waiting for discovery"


def test_waiting_label_for_tracks_without_waiting_phase() -> None:
    """A gated track without its own waiting phase still reads as waiting."""
    assert phase_label(EMAIL_IMPORT_TRACK, "waiting") == "Waiting"


def test_total_phases_excludes_failure() -> None:
    """The failure phase does not count toward progress."""
    assert total_phases(DISCOVERY_TRACK) == 7
    assert total_phases(EMAIL_IMPORT_TRACK) == 5
