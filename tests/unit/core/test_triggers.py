"""Unit tests for one-shot trigger latches."""

from tests.helpers.snapshots import record, snapshot
from vigil_core.triggers import TriggerDecision, TriggerDispatcher
from vigil_schemas.tracks import DEFAULT_TRACKS, DISCOVERY_TRACK, EMAIL_IMPORT_TRACK, SCRAPE_TRACK

EMPTY = snapshot()


def _open(dispatcher: TriggerDispatcher, track_id: str = "scrape") -> bool:
    return dispatcher.observe_gate(track_id, True)


def test_only_tracks_with_triggers_get_latches() -> None:
    """Every default track defines a trigger."""
    dispatcher = TriggerDispatcher(DEFAULT_TRACKS)
    assert dispatcher.latch("scrape") is not None
    assert dispatcher.latch("unknown") is None
    assert dispatcher.observe_gate("unknown", True) is False


def test_gate_opening_is_reported_once() -> None:
    """Only the transition to open counts as an opening."""
    dispatcher = TriggerDispatcher(DEFAULT_TRACKS)
    assert dispatcher.observe_gate("scrape", False) is False
    assert _open(dispatcher) is True
    assert _open(dispatcher) is False


def test_fires_once_per_gate_opening() -> None:
    """A second evaluation after firing stays idle."""
    dispatcher = TriggerDispatcher(DEFAULT_TRACKS)
    dispatcher.observe_gate("scrape", False)
    _open(dispatcher)
    assert dispatcher.maybe_trigger(SCRAPE_TRACK, "waiting", None, EMPTY) == (
        TriggerDecision.FIRE
    )
    _open(dispatcher)
    assert dispatcher.maybe_trigger(SCRAPE_TRACK, "waiting", None, EMPTY) == (
        TriggerDecision.IDLE
    )


def test_not_armed_without_gate_opening() -> None:
    """Closed gates never fire."""
    dispatcher = TriggerDispatcher(DEFAULT_TRACKS)
    dispatcher.observe_gate("scrape", False)
    assert dispatcher.maybe_trigger(SCRAPE_TRACK, "waiting", None, EMPTY) == (
        TriggerDecision.IDLE
    )


def test_skips_when_counts_already_satisfy_the_work() -> None:
    """Already classified data is not re-processed."""
    dispatcher = TriggerDispatcher(DEFAULT_TRACKS)
    _open(dispatcher, "email_import")
    item = record("email_import", "pending")
    snap = snapshot(item, counts={"emails_received": 200, "emails_classified": 200})
    assert dispatcher.maybe_trigger(EMAIL_IMPORT_TRACK, "complete", item, snap) == (
        TriggerDecision.SKIP_SATISFIED
    )
    latch = dispatcher.latch("email_import")
    assert latch is not None and latch.fired is False and latch.armed is False


def test_skips_when_stage_already_started() -> None:
    """A running stage from an earlier session is not restarted."""
    dispatcher = TriggerDispatcher(DEFAULT_TRACKS)
    _open(dispatcher)
    item = record("competitor_scrape", "extracting")
    assert dispatcher.maybe_trigger(SCRAPE_TRACK, "extracting", item, snapshot(item)) == (
        TriggerDecision.SKIP_STARTED
    )


def test_counts_promoting_status_do_not_block_firing() -> None:
    """Activity inference does not count as the stage having started."""
    dispatcher = TriggerDispatcher(DEFAULT_TRACKS)
    _open(dispatcher, "email_import")
    item = record("email_import", "pending")
    snap = snapshot(item, counts={"emails_received": 500})
    assert dispatcher.maybe_trigger(EMAIL_IMPORT_TRACK, "classifying", item, snap) == (
        TriggerDecision.FIRE
    )


def test_waits_for_required_counts_while_armed() -> None:
    """The email trigger holds until mail has arrived."""
    dispatcher = TriggerDispatcher(DEFAULT_TRACKS)
    _open(dispatcher, "email_import")
    assert dispatcher.maybe_trigger(EMAIL_IMPORT_TRACK, "pending", None, EMPTY) == (
        TriggerDecision.IDLE
    )
    arrived = snapshot(counts={"emails_received": 5})
    assert dispatcher.maybe_trigger(EMAIL_IMPORT_TRACK, "classifying", None, arrived) == (
        TriggerDecision.FIRE
    )


def test_manual_trigger_never_fires_on_its_own() -> None:
    """Discovery only starts through an explicit retry."""
    dispatcher = TriggerDispatcher(DEFAULT_TRACKS)
    _open(dispatcher, "discovery")
    assert dispatcher.maybe_trigger(DISCOVERY_TRACK, "pending", None, EMPTY) == (
        TriggerDecision.IDLE
    )
    assert dispatcher.begin_manual("discovery") is True


def test_failure_rearms_latch_for_a_later_tick() -> None:
    """A failed call is surfaced and fires again on the next evaluation."""
    dispatcher = TriggerDispatcher(DEFAULT_TRACKS)
    _open(dispatcher)
    assert dispatcher.maybe_trigger(SCRAPE_TRACK, "waiting", None, EMPTY) == (
        TriggerDecision.FIRE
    )
    dispatcher.mark_failed("scrape", "HTTP 502")
    assert dispatcher.error_for("scrape") == "HTTP 502"
    latch = dispatcher.latch("scrape")
    assert latch is not None and latch.fired is False and latch.armed is True
    assert dispatcher.maybe_trigger(SCRAPE_TRACK, "waiting", None, EMPTY) == (
        TriggerDecision.FIRE
    )
    assert dispatcher.error_for("scrape") is None
    assert dispatcher.maybe_trigger(SCRAPE_TRACK, "waiting", None, EMPTY) == (
        TriggerDecision.IDLE
    )


def test_failure_behind_closed_gate_stays_disarmed() -> None:
    """No refire while the upstream gate is closed."""
    dispatcher = TriggerDispatcher(DEFAULT_TRACKS)
    _open(dispatcher)
    dispatcher.maybe_trigger(SCRAPE_TRACK, "waiting", None, EMPTY)
    dispatcher.observe_gate("scrape", False)
    dispatcher.mark_failed("scrape", "timeout")
    assert dispatcher.maybe_trigger(SCRAPE_TRACK, "waiting", None, EMPTY) == (
        TriggerDecision.IDLE
    )


def test_retry_after_failure_fires_exactly_once_more() -> None:
    """An explicit retry claims the latch for one more call."""
    dispatcher = TriggerDispatcher(DEFAULT_TRACKS)
    _open(dispatcher)
    dispatcher.maybe_trigger(SCRAPE_TRACK, "waiting", None, EMPTY)
    dispatcher.mark_failed("scrape", "HTTP 502")
    assert dispatcher.begin_manual("scrape") is True
    assert dispatcher.error_for("scrape") is None
    assert dispatcher.maybe_trigger(SCRAPE_TRACK, "waiting", None, EMPTY) == (
        TriggerDecision.IDLE
    )
    dispatcher.mark_succeeded("scrape")
    assert dispatcher.error_for("scrape") is None


def test_gate_reopening_rearms_after_failure() -> None:
    """A later organic gate opening may fire again."""
    dispatcher = TriggerDispatcher(DEFAULT_TRACKS)
    _open(dispatcher)
    dispatcher.maybe_trigger(SCRAPE_TRACK, "waiting", None, EMPTY)
    dispatcher.mark_failed("scrape", "timeout")
    dispatcher.observe_gate("scrape", False)
    _open(dispatcher)
    assert dispatcher.maybe_trigger(SCRAPE_TRACK, "waiting", None, EMPTY) == (
        TriggerDecision.FIRE
    )


def test_reset_rearms_open_gate() -> None:
    """Resetting a track clears the latch and re-arms while the gate is open."""
    dispatcher = TriggerDispatcher(DEFAULT_TRACKS)
    _open(dispatcher)
    dispatcher.maybe_trigger(SCRAPE_TRACK, "waiting", None, EMPTY)
    dispatcher.reset("scrape")
    latch = dispatcher.latch("scrape")
    assert latch is not None and latch.fired is False and latch.armed is True


def test_review_ready_scrape_counts_as_not_started() -> None:
    """A scrape awaiting competitor review is started when its gate opens."""
    dispatcher = TriggerDispatcher(DEFAULT_TRACKS)
    _open(dispatcher)
    item = record("competitor_scrape", "review_ready", minutes_ago=30)
    assert dispatcher.maybe_trigger(SCRAPE_TRACK, "review_ready", item, snapshot(item)) == (
        TriggerDecision.FIRE
    )


def test_handoff_status_reads_as_started() -> None:
    """A handoff record written by one session blocks the next session's call."""
    dispatcher = TriggerDispatcher(DEFAULT_TRACKS)
    _open(dispatcher, "email_import")
    trigger = EMAIL_IMPORT_TRACK.trigger
    assert trigger is not None
    item = record("email_import", trigger.handoff_status)
    snap = snapshot(item, counts={"emails_received": 10})
    assert dispatcher.maybe_trigger(EMAIL_IMPORT_TRACK, "dispatched", item, snap) == (
        TriggerDecision.SKIP_STARTED
    )
