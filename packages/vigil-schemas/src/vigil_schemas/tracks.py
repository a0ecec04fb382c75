"""Static track definitions: phase tables, count references and triggers."""

from __future__ import annotations

from pydantic import Field, model_validator

from vigil_schemas.base import BaseSchema
from vigil_schemas.primitives import (
    CountSource,
    CountSourceValue,
    JsonPrimitive,
    StatusKey,
    TrackId,
    TrackIdValue,
)


class PhaseDefinition(BaseSchema):
    """One named phase of a track."""

    key: StatusKey = Field(..., description="Status string the phase matches")
    label: str = Field(..., min_length=1, description="Display label")


class CountRef(BaseSchema):
    """Reference to a number in the snapshot, the record details or a signal."""

    source: CountSourceValue = Field(..., description="Where the value is read from")
    key: str = Field(..., min_length=1, description="Key within the source")

    @classmethod
    def parse(cls, dotted: str) -> CountRef:
        """Build a reference from a ``source.key`` string.

        Args:
            dotted: Reference such as ``counts.emails_received``.

        Returns:
            CountRef: Parsed reference.

        Raises:
            ValueError: If the source prefix is unknown or the key is empty.
        """
        source, _, key = dotted.partition(".")
        if not key:
            raise ValueError(f"Count reference needs a source prefix: {dotted}")
        return cls(source=CountSource(source), key=key)


class CountDisplay(BaseSchema):
    """Labelled sub-count shown on a track card."""

    label: str = Field(..., min_length=1, description="Display label")
    refs: list[CountRef] = Field(
        ..., min_length=1, description="References tried in order"
    )


class SignalMatch(BaseSchema):
    """Auxiliary progress signal that corroborates success."""

    key: str = Field(..., min_length=1, description="Flattened signal key")
    values: list[JsonPrimitive] = Field(
        ..., min_length=1, description="Values that mean the work is finished"
    )


class TriggerDefinition(BaseSchema):
    """External stage-start call fired when a track's gate opens."""

    workflow: str = Field(..., min_length=1, description="Webhook path segment")
    callback_path: str = Field(
        ..., min_length=1, description="Callback path the job reports to"
    )
    automatic: bool = Field(
        True, description="Fire on gate opening; otherwise only on retry"
    )
    requires: list[CountRef] = Field(
        default_factory=list,
        description="Counts that must all be positive before firing",
    )
    handoff_status: StatusKey = Field(
        ..., description="Started status written to the handoff record"
    )
    handoff_message: str = Field(
        ..., min_length=1, description="Message stored on the handoff record"
    )


class TrackDefinition(BaseSchema):
    """Per-track parameters for inference, gating and progress."""

    track_id: TrackIdValue = Field(..., description="Track identifier")
    title: str = Field(..., min_length=1, description="Card title")
    workflow_type: StatusKey = Field(..., description="Backend workflow type")
    phases: list[PhaseDefinition] = Field(
        ..., min_length=2, description="Ordered phase table"
    )
    success_statuses: list[StatusKey] = Field(
        ..., min_length=1, description="Terminal success statuses, primary first"
    )
    failure_status: StatusKey = Field("failed", description="Failure phase key")
    not_started_statuses: list[StatusKey] = Field(
        ..., min_length=1, description="Statuses meaning work has not begun"
    )
    wait_statuses: list[StatusKey] = Field(
        default_factory=list,
        description="Statuses waiting on the user; never treated as stale",
    )
    in_progress_status: StatusKey | None = Field(
        None, description="Phase promoted to when counts move"
    )
    upstream: TrackIdValue | None = Field(None, description="Upstream dependency")
    done: list[CountRef] = Field(
        default_factory=list, description="Completed work count references"
    )
    total: list[CountRef] = Field(
        default_factory=list, description="Total work count references"
    )
    activity: list[CountRef] = Field(
        default_factory=list,
        description="Evidence of movement; defaults to the done references",
    )
    percent_from_counts: bool = Field(
        False, description="Progress is done/total when total is known"
    )
    bulk_phases: list[StatusKey] = Field(
        default_factory=list, description="Phases with current/total sub-counts"
    )
    bulk_current: CountRef | None = Field(None, description="Bulk current count")
    bulk_total: CountRef | None = Field(None, description="Bulk total count")
    current_item_key: str | None = Field(
        None, description="Details key naming the item being processed"
    )
    count_displays: list[CountDisplay] = Field(
        default_factory=list, description="Sub-counts shown on the card"
    )
    success_signals: list[SignalMatch] = Field(
        default_factory=list, description="Auxiliary success signals"
    )
    throughput_per_minute: float | None = Field(
        None, gt=0, description="Items per minute for remaining-time estimates"
    )
    retry_status: StatusKey = Field(
        "pending", description="Status written when a failed track is retried"
    )
    trigger: TriggerDefinition | None = Field(
        None, description="Stage-start trigger"
    )

    @property
    def phase_keys(self) -> list[str]:
        """Phase keys in table order."""
        return [phase.key for phase in self.phases]

    @property
    def success_status(self) -> str:
        """Primary success phase key."""
        return self.success_statuses[0]

    @property
    def terminal_statuses(self) -> set[str]:
        """Success statuses plus the failure status."""
        return {*self.success_statuses, self.failure_status}

    @property
    def stale_exempt_statuses(self) -> set[str]:
        """Statuses that never go stale: terminal and user-wait statuses."""
        return {*self.terminal_statuses, *self.wait_statuses}

    @property
    def first_status(self) -> str:
        """Phase assumed when no record exists."""
        return self.phases[0].key

    @model_validator(mode="after")
    def validate_phase_references(self) -> TrackDefinition:
        """Ensure every referenced status exists in the phase table.

        Returns:
            TrackDefinition: Validated definition.

        Raises:
            ValueError: If phase keys repeat, a referenced status is missing or the
                handoff status still reads as not started.
        """
        keys = self.phase_keys
        if len(set(keys)) != len(keys):
            raise ValueError(f"{self.track_id}: phase keys must be unique")
        referenced = [
            *self.success_statuses,
            self.failure_status,
            *self.not_started_statuses,
            *self.wait_statuses,
            self.retry_status,
            *self.bulk_phases,
        ]
        if self.in_progress_status is not None:
            referenced.append(self.in_progress_status)
        if self.trigger is not None:
            referenced.append(self.trigger.handoff_status)
        missing = [status for status in referenced if status not in keys]
        if missing:
            raise ValueError(
                f"{self.track_id}: statuses missing from phase table: "
                + ", ".join(missing)
            )
        if (
            self.trigger is not None
            and self.trigger.handoff_status in self.not_started_statuses
        ):
            raise ValueError(
                f"{self.track_id}: handoff status {self.trigger.handoff_status} "
                "must mark the stage as started"
            )
        if self.upstream == self.track_id:
            raise ValueError(f"{self.track_id}: track cannot depend on itself")
        return self


class TrackRegistry(BaseSchema):
    """Ordered set of tracks, upstream tracks first."""

    tracks: list[TrackDefinition] = Field(
        ..., min_length=1, description="Track definitions"
    )

    @model_validator(mode="after")
    def validate_order(self) -> TrackRegistry:
        """Ensure ids are unique and upstream tracks come first.

        Returns:
            TrackRegistry: Validated registry.

        Raises:
            ValueError: If ids repeat or an upstream is missing or later.
        """
        seen: set[str] = set()
        for track in self.tracks:
            if track.track_id in seen:
                raise ValueError(f"Duplicate track id: {track.track_id}")
            if track.upstream is not None and track.upstream not in seen:
                raise ValueError(
                    f"{track.track_id}: upstream {track.upstream} must be "
                    "registered before it"
                )
            seen.add(track.track_id)
        return self

    def get(self, track_id: TrackId | str) -> TrackDefinition | None:
        """Return the definition for a track id, if registered.

        Args:
            track_id: Track identifier.

        Returns:
            TrackDefinition | None: Matching definition.
        """
        for track in self.tracks:
            if track.track_id == track_id:
                return track
        return None

    def select(self, track_ids: list[TrackId]) -> TrackRegistry:
        """Return a registry restricted to the given ids, keeping order.

        Args:
            track_ids: Allowed track identifiers.

        Returns:
            TrackRegistry: Restricted registry.
        """
        allowed = set(track_ids)
        return TrackRegistry(
            tracks=[track for track in self.tracks if track.track_id in allowed]
        )


def _ref(dotted: str) -> CountRef:
    return CountRef.parse(dotted)


DISCOVERY_TRACK = TrackDefinition(
    track_id=TrackId.DISCOVERY,
    title="Competitor discovery",
    workflow_type="competitor_discovery",
    phases=[
        PhaseDefinition(key="pending", label="Queued"),
        PhaseDefinition(key="starting", label="Starting search"),
        PhaseDefinition(key="discovering", label="Finding competitors"),
        PhaseDefinition(key="search_complete", label="Search complete"),
        PhaseDefinition(key="verification_complete", label="Verifying websites"),
        PhaseDefinition(key="health_check_complete", label="Checking websites"),
        PhaseDefinition(key="complete", label="Discovery complete"),
        PhaseDefinition(key="failed", label="Discovery failed"),
    ],
    success_statuses=["complete"],
    not_started_statuses=["pending"],
    in_progress_status="discovering",
    count_displays=[
        CountDisplay(
            label="competitors found",
            refs=[
                _ref("counts.competitors_discovered"),
                _ref("details.competitors_found"),
            ],
        )
    ],
    trigger=TriggerDefinition(
        workflow="competitor-discovery",
        callback_path="n8n-competitor-callback",
        automatic=False,
        handoff_status="discovering",
        handoff_message="Competitor discovery started",
    ),
)

SCRAPE_TRACK = TrackDefinition(
    track_id=TrackId.SCRAPE,
    title="Competitor analysis",
    workflow_type="competitor_scrape",
    phases=[
        PhaseDefinition(key="waiting", label="Waiting for discovery"),
        PhaseDefinition(key="review_ready", label="Ready for review"),
        PhaseDefinition(key="pending", label="Queued"),
        PhaseDefinition(key="scraping", label="Scraping competitor websites"),
        PhaseDefinition(key="extracting", label="Extracting FAQs"),
        PhaseDefinition(key="scrape_processing", label="Processing FAQs"),
        PhaseDefinition(key="complete", label="Analysis complete"),
        PhaseDefinition(key="failed", label="Analysis failed"),
    ],
    success_statuses=["complete"],
    not_started_statuses=["waiting", "review_ready", "pending"],
    wait_statuses=["review_ready"],
    in_progress_status="scraping",
    upstream=TrackId.DISCOVERY,
    done=[_ref("counts.competitors_scraped")],
    total=[
        _ref("details.total"),
        _ref("counts.competitors_selected"),
        _ref("counts.competitors_discovered"),
    ],
    bulk_phases=["scraping"],
    bulk_current=_ref("details.current"),
    bulk_total=_ref("details.total"),
    current_item_key="current_competitor",
    count_displays=[
        CountDisplay(label="scraped", refs=[_ref("counts.competitors_scraped")]),
        CountDisplay(label="FAQs generated", refs=[_ref("counts.faqs_generated")]),
    ],
    trigger=TriggerDefinition(
        workflow="competitor-scrape",
        callback_path="n8n-competitor-callback",
        handoff_status="scraping",
        handoff_message="Competitor analysis queued",
    ),
)

EMAIL_IMPORT_TRACK = TrackDefinition(
    track_id=TrackId.EMAIL_IMPORT,
    title="Email classification",
    workflow_type="email_import",
    phases=[
        PhaseDefinition(key="pending", label="Queued"),
        PhaseDefinition(key="dispatched", label="Dispatched"),
        PhaseDefinition(key="classifying", label="Classifying emails"),
        PhaseDefinition(key="classification_complete", label="Classification complete"),
        PhaseDefinition(key="complete", label="Email import complete"),
        PhaseDefinition(key="failed", label="Classification failed"),
    ],
    success_statuses=["complete", "classification_complete"],
    not_started_statuses=["pending"],
    in_progress_status="classifying",
    done=[_ref("counts.emails_classified"), _ref("details.emails_classified")],
    total=[
        _ref("counts.emails_received"),
        _ref("details.total_emails"),
        _ref("signals.email.estimated_total_emails"),
    ],
    activity=[_ref("counts.emails_received")],
    percent_from_counts=True,
    count_displays=[
        CountDisplay(
            label="total emails",
            refs=[_ref("counts.emails_received"), _ref("details.total_emails")],
        ),
        CountDisplay(
            label="classified",
            refs=[
                _ref("counts.emails_classified"),
                _ref("details.emails_classified"),
            ],
        ),
    ],
    success_signals=[
        SignalMatch(key="email.current_phase", values=["learning", "complete"]),
        SignalMatch(key="email.voice_profile_complete", values=[True]),
        SignalMatch(key="email.phase1_status", values=["complete"]),
    ],
    throughput_per_minute=200.0,
    trigger=TriggerDefinition(
        workflow="email-classification",
        callback_path="n8n-email-callback",
        requires=[_ref("counts.emails_received")],
        handoff_status="dispatched",
        handoff_message="Email classification queued",
    ),
)

DEFAULT_TRACKS = TrackRegistry(
    tracks=[DISCOVERY_TRACK, SCRAPE_TRACK, EMAIL_IMPORT_TRACK]
)

WEBSITE_TRACK = TrackDefinition(
    track_id=TrackId.WEBSITE,
    title="Website knowledge",
    workflow_type="website_scrape",
    phases=[
        PhaseDefinition(key="pending", label="Queued"),
        PhaseDefinition(key="scraping", label="Finding and scraping pages"),
        PhaseDefinition(key="processing", label="Extracting FAQs"),
        PhaseDefinition(key="completed", label="Knowledge extracted"),
        PhaseDefinition(key="failed", label="Website import failed"),
    ],
    success_statuses=["completed"],
    not_started_statuses=["pending"],
    bulk_phases=["scraping"],
    bulk_current=_ref("details.pages_processed"),
    bulk_total=_ref("details.total_pages_found"),
    count_displays=[
        CountDisplay(label="pages found", refs=[_ref("details.total_pages_found")]),
        CountDisplay(label="pages scraped", refs=[_ref("details.pages_processed")]),
        CountDisplay(label="FAQs extracted", refs=[_ref("details.faqs_found")]),
    ],
)

TRACK_CATALOG = TrackRegistry(
    tracks=[DISCOVERY_TRACK, SCRAPE_TRACK, EMAIL_IMPORT_TRACK, WEBSITE_TRACK]
)


def resolve_tracks(track_ids: list[TrackId] | None) -> TrackRegistry:
    """Return the tracks to observe.

    Args:
        track_ids: Allow-list from configuration; None keeps the default set.

    Returns:
        TrackRegistry: Default tracks, or the catalog restricted to the ids.
    """
    if track_ids is None:
        return DEFAULT_TRACKS
    return TRACK_CATALOG.select(track_ids)
