"""Unit tests for count reference resolution."""

from tests.helpers.snapshots import record, snapshot
from vigil_core.counts import lookup_count, resolve_count
from vigil_schemas.tracks import CountRef


def test_lookup_reads_each_source() -> None:
    """Counts, record details and signals are all addressable."""
    item = record("email_import", "classifying", details={"total_emails": 40})
    snap = snapshot(
        item,
        counts={"emails_received": 12},
        signals={"email.estimated_total_emails": 80},
    )
    assert lookup_count(CountRef.parse("counts.emails_received"), item, snap) == 12
    assert lookup_count(CountRef.parse("details.total_emails"), item, snap) == 40
    assert (
        lookup_count(CountRef.parse("signals.email.estimated_total_emails"), item, snap)
        == 80
    )


def test_lookup_coerces_loose_values() -> None:
    """Numeric strings and floats count; booleans, nulls and junk do not."""
    item = record(
        "competitor_scrape",
        "scraping",
        details={"a": "17", "b": 3.9, "c": True, "d": None, "e": "lots", "f": -4},
    )
    snap = snapshot(item)
    values = [
        lookup_count(CountRef.parse(f"details.{key}"), item, snap)
        for key in ("a", "b", "c", "d", "e", "f", "missing")
    ]
    assert values == [17, 3, 0, 0, 0, 0, 0]


def test_details_without_record_is_zero() -> None:
    """Details references need a record."""
    assert lookup_count(CountRef.parse("details.total"), None, snapshot()) == 0


def test_resolve_returns_first_positive_value() -> None:
    """Zero values fall through to the next reference."""
    item = record("competitor_scrape", "scraping", details={"total": 0})
    snap = snapshot(item, counts={"competitors_selected": 0, "competitors_discovered": 9})
    refs = [
        CountRef.parse("details.total"),
        CountRef.parse("counts.competitors_selected"),
        CountRef.parse("counts.competitors_discovered"),
    ]
    assert resolve_count(refs, item, snap) == 9
    assert resolve_count([], item, snap) == 0
