"""Per-session owner of polling, trigger latches and retries."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from uuid import UUID, uuid4

from vigil_core.phases import phase_index, phase_label
from vigil_core.ports.dispatch import (
    DispatchError,
    StageStarterProtocol,
    StageStartRequest,
)
from vigil_core.ports.session import (
    LogSinkProtocol,
    ProgressSinkProtocol,
    SessionError,
    SessionErrorCode,
    SessionErrorDetails,
    SessionErrorInfo,
    build_all_complete_log,
    build_gate_opened_log,
    build_poll_failed_log,
    build_poll_recovered_log,
    build_session_mounted_log,
    build_session_unmounted_log,
    build_track_retry_log,
    build_track_stale_log,
    build_track_status_changed_log,
    build_trigger_dispatched_log,
    build_trigger_failed_log,
    build_trigger_skipped_log,
)
from vigil_core.ports.source import (
    ChangeFeedProtocol,
    SourceError,
    StatusSourceProtocol,
    StatusWrite,
    StatusWriterProtocol,
)
from vigil_core.reconciler import badge_for, reconcile
from vigil_core.scheduler import PollScheduler
from vigil_core.staleness import parse_timestamp, seconds_since
from vigil_core.triggers import TriggerDecision, TriggerDispatcher
from vigil_schemas.config import PollingConfig
from vigil_schemas.events import ProgressEvent, TriggerSkipReason
from vigil_schemas.logs import LogEntry
from vigil_schemas.primitives import Timestamp, TrackErrorKind
from vigil_schemas.progress import OnboardingProgress, ProgressUpdate
from vigil_schemas.records import SourceSnapshot
from vigil_schemas.responses import AdvanceResult
from vigil_schemas.tracks import DEFAULT_TRACKS, TrackDefinition, TrackRegistry

CONNECTION_ERROR_MESSAGE = (
    "Unable to reach the server. Progress shown may be out of date."
)

_SKIP_REASONS = {
    TriggerDecision.SKIP_SATISFIED: TriggerSkipReason.ALREADY_SATISFIED,
    TriggerDecision.SKIP_STARTED: TriggerSkipReason.ALREADY_STARTED,
}


def _now_timestamp() -> Timestamp:
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


@dataclass(slots=True)
class SessionState:
    """Mutable state owned by one mount of the progress view."""

    session_id: UUID
    dispatcher: TriggerDispatcher
    mounted_at: Timestamp | None = None
    latest: OnboardingProgress | None = None
    consecutive_failures: int = 0
    first_failure_at: Timestamp | None = None
    dispatch_tasks: set[asyncio.Task[None]] = field(default_factory=set)


class OnboardingController:
    """Observes the onboarding tracks of one workspace.

    Every mount starts a fresh session: new latches, no cached progress and
    a new elapsed-time origin. Unmount stops the poll loop, the change-feed
    subscription and any in-flight stage-start calls.
    """

    def __init__(
        self,
        workspace_id: str,
        source: StatusSourceProtocol,
        *,
        tracks: TrackRegistry | None = None,
        polling: PollingConfig | None = None,
        starter: StageStarterProtocol | None = None,
        writer: StatusWriterProtocol | None = None,
        callback_base_url: str | None = None,
        change_feed: ChangeFeedProtocol | None = None,
        log_sink: LogSinkProtocol | None = None,
        progress_sink: ProgressSinkProtocol | None = None,
        clock: Callable[[], Timestamp] | None = None,
    ) -> None:
        """Initialize the controller.

        Args:
            workspace_id: Tenant whose tracks are observed.
            source: Status source adapter.
            tracks: Tracks to observe (defaults to the standard set).
            polling: Poll cadence and thresholds.
            starter: Stage-start adapter; triggers are disabled without it.
            writer: Status writer used to reset tracks without a trigger.
            callback_base_url: Base URL for stage callbacks.
            change_feed: Optional push channel used to wake the poller.
            log_sink: Optional structured log sink.
            progress_sink: Optional progress update sink.
            clock: Timestamp factory, injectable for tests.

        Raises:
            ValueError: If a starter is given without a callback base URL.
        """
        if starter is not None and callback_base_url is None:
            raise ValueError("callback_base_url is required when triggers are enabled")
        self._workspace_id = workspace_id
        self._source = source
        self._tracks = tracks or DEFAULT_TRACKS
        self._polling = polling or PollingConfig()
        self._starter = starter
        self._writer = writer
        self._callback_base_url = (
            callback_base_url.rstrip("/") if callback_base_url else None
        )
        self._change_feed = change_feed
        self._log_sink = log_sink
        self._progress_sink = progress_sink
        self._clock = clock or _now_timestamp
        self._scheduler: PollScheduler | None = None
        self._state = self._new_state()

    @property
    def workspace_id(self) -> str:
        """Observed workspace."""
        return self._workspace_id

    @property
    def session_id(self) -> UUID:
        """Identifier of the current session."""
        return self._state.session_id

    @property
    def tracks(self) -> TrackRegistry:
        """Observed tracks."""
        return self._tracks

    @property
    def latest(self) -> OnboardingProgress | None:
        """Most recent reduced progress, if any tick succeeded."""
        return self._state.latest

    @property
    def mounted(self) -> bool:
        """Whether the poll loop is running."""
        return self._scheduler is not None

    @property
    def can_continue(self) -> bool:
        """Continue is enabled exactly when every track completed."""
        latest = self._state.latest
        return latest is not None and latest.all_complete

    @property
    def can_skip(self) -> bool:
        """Skipping ahead is always allowed."""
        return True

    def elapsed_seconds(self) -> float:
        """Return seconds since the current session was mounted."""
        mounted_at = self._state.mounted_at
        if mounted_at is None:
            return 0.0
        return max(seconds_since(mounted_at, parse_timestamp(self._clock())), 0.0)

    async def mount(self) -> OnboardingProgress | None:
        """Start a fresh session, poll once and start the poll loop.

        Returns:
            OnboardingProgress | None: Progress from the first tick.
        """
        if self._scheduler is not None:
            return self._state.latest
        self._state = self._new_state()
        self._state.mounted_at = self._clock()
        await self._emit_log(
            build_session_mounted_log(
                self._clock(),
                self._workspace_id,
                self._state.session_id,
                [str(track.track_id) for track in self._tracks.tracks],
                self._polling.interval_seconds,
            )
        )
        progress = await self.refresh()
        change_feed = self._change_feed if self._polling.push_enabled else None
        scheduler = PollScheduler(
            self.refresh,
            interval_seconds=self._polling.interval_seconds,
            change_feed=change_feed,
            workspace_id=self._workspace_id,
        )
        self._scheduler = scheduler
        await scheduler.start()
        return progress

    async def unmount(self) -> None:
        """Stop polling and cancel in-flight stage-start calls."""
        scheduler = self._scheduler
        if scheduler is None:
            return
        self._scheduler = None
        await scheduler.stop()
        state = self._state
        cancelled = await self._cancel_dispatches(state)
        await self._emit_log(
            build_session_unmounted_log(
                self._clock(),
                self._workspace_id,
                state.session_id,
                self.elapsed_seconds(),
                cancelled,
            )
        )

    async def __aenter__(self) -> OnboardingController:
        await self.mount()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.unmount()

    def wake(self) -> None:
        """Request an immediate extra poll while mounted."""
        if self._scheduler is not None:
            self._scheduler.wake()

    async def refresh(self) -> OnboardingProgress | None:
        """Run one poll tick.

        A failed fetch keeps the previous progress; it is only surfaced as a
        connection error once failures outlast the failure window.

        Returns:
            OnboardingProgress | None: Latest progress after the tick.
        """
        state = self._state
        try:
            snapshot = await self._source.fetch_snapshot(self._workspace_id)
        except SourceError as exc:
            await self._record_fetch_failure(state, str(exc))
            return state.latest
        if state.consecutive_failures:
            state.consecutive_failures = 0
            state.first_failure_at = None
            await self._emit_log(
                build_poll_recovered_log(
                    self._clock(), self._workspace_id, state.session_id
                )
            )
        progress = reconcile(
            snapshot,
            self._tracks,
            now=parse_timestamp(self._clock()),
            polling=self._polling,
        )
        await self._evaluate_triggers(state, progress, snapshot)
        progress = self._overlay_dispatch_state(state, progress)
        previous = state.latest
        state.latest = progress
        await self._log_transitions(state, previous, progress)
        await self._emit_progress(state, ProgressEvent.TICK)
        return progress

    async def retry_track(self, track_id: str) -> bool:
        """Retry a failed track.

        Restarts the stage through its trigger or, without one, resets the
        status record first; the error and the trigger latch are cleared only
        once that write succeeded.

        Args:
            track_id: Track to retry.

        Returns:
            bool: True when a stage-start call was scheduled.

        Raises:
            SessionError: If the track is unknown or not in a failed state.
            SourceError: If the status record cannot be reset.
        """
        track = self._require_track(track_id)
        state = self._state
        current = state.latest.track(track.track_id) if state.latest else None
        if current is None or not current.retry_available:
            raise SessionError(
                SessionErrorInfo(
                    code=SessionErrorCode.RETRY_UNAVAILABLE,
                    message=f"Track {track.track_id} has not failed",
                    details=SessionErrorDetails(
                        session_id=state.session_id, track_id=str(track.track_id)
                    ),
                )
            )
        await self._emit_log(
            build_track_retry_log(
                self._clock(), self._workspace_id, state.session_id, track.track_id
            )
        )
        dispatched = track.trigger is not None and self._starter is not None
        if not dispatched and self._writer is not None:
            await self._writer.write_status(
                StatusWrite(
                    workspace_id=self._workspace_id,
                    workflow_type=track.workflow_type,
                    status=track.retry_status,
                    details={"message": "Retry requested"},
                    updated_at=self._clock(),
                )
            )
        state.dispatcher.reset(track.track_id)
        if dispatched and state.dispatcher.begin_manual(track.track_id):
            self._launch_dispatch(state, track, manual=True)
        self._mark_retrying(state, track)
        await self._emit_progress(state, ProgressEvent.DISPATCH_UPDATED)
        self.wake()
        return dispatched

    async def retry_dispatch(self, track_id: str) -> bool:
        """Re-attempt only the failed stage-start call of a track.

        Args:
            track_id: Track whose dispatch failed.

        Returns:
            bool: True when the call was scheduled.

        Raises:
            SessionError: If the track is unknown or has no dispatch error.
        """
        track = self._require_track(track_id)
        state = self._state
        if self._starter is None or state.dispatcher.error_for(track.track_id) is None:
            raise SessionError(
                SessionErrorInfo(
                    code=SessionErrorCode.RETRY_UNAVAILABLE,
                    message=f"Track {track.track_id} has no failed dispatch",
                    details=SessionErrorDetails(
                        session_id=state.session_id, track_id=str(track.track_id)
                    ),
                )
            )
        state.dispatcher.begin_manual(track.track_id)
        self._launch_dispatch(state, track, manual=True)
        if state.latest is not None:
            state.latest = self._overlay_dispatch_state(state, state.latest)
        return True

    def advance(self, *, skip: bool = False) -> AdvanceResult:
        """Leave the view through Continue or Skip.

        Args:
            skip: Leave even though tracks are still running.

        Returns:
            AdvanceResult: Outcome of the action.

        Raises:
            SessionError: If Continue is requested before every track completed.
        """
        if not skip and not self.can_continue:
            raise SessionError(
                SessionErrorInfo(
                    code=SessionErrorCode.NOT_READY,
                    message="Not every track has completed; skip to continue anyway",
                    details=SessionErrorDetails(session_id=self._state.session_id),
                )
            )
        return AdvanceResult(
            session_id=self._state.session_id,
            skipped=skip,
            all_complete=self.can_continue,
        )

    async def wait_for_dispatches(self) -> None:
        """Wait for in-flight stage-start calls of the current session."""
        tasks = list(self._state.dispatch_tasks)
        if tasks:
            await asyncio.gather(*tasks)

    def _new_state(self) -> SessionState:
        return SessionState(
            session_id=uuid4(),
            dispatcher=TriggerDispatcher(
                self._tracks,
                completion_threshold=self._polling.completion_threshold,
            ),
        )

    def _require_track(self, track_id: str) -> TrackDefinition:
        track = self._tracks.get(track_id)
        if track is None:
            raise SessionError(
                SessionErrorInfo(
                    code=SessionErrorCode.UNKNOWN_TRACK,
                    message=f"Unknown track: {track_id}",
                    details=SessionErrorDetails(
                        session_id=self._state.session_id,
                        track_id=track_id,
                        valid_tracks=[str(t.track_id) for t in self._tracks.tracks],
                    ),
                )
            )
        return track

    async def _record_fetch_failure(self, state: SessionState, reason: str) -> None:
        now = self._clock()
        state.consecutive_failures += 1
        if state.first_failure_at is None:
            state.first_failure_at = now
        await self._emit_log(
            build_poll_failed_log(
                now,
                self._workspace_id,
                state.session_id,
                state.consecutive_failures,
                reason,
            )
        )
        if state.latest is None or state.latest.connection_error is not None:
            return
        failing_for = seconds_since(state.first_failure_at, parse_timestamp(now))
        if failing_for >= self._polling.failure_window_seconds:
            state.latest = state.latest.model_copy(
                update={"connection_error": CONNECTION_ERROR_MESSAGE}
            )
            await self._emit_progress(state, ProgressEvent.TICK)

    async def _evaluate_triggers(
        self,
        state: SessionState,
        progress: OnboardingProgress,
        snapshot: SourceSnapshot,
    ) -> None:
        if self._starter is None:
            return
        for track in self._tracks.tracks:
            track_state = progress.track(track.track_id)
            if track.trigger is None or track_state is None:
                continue
            opened = state.dispatcher.observe_gate(
                track.track_id, track_state.gate_open
            )
            if opened and track.upstream is not None:
                await self._emit_log(
                    build_gate_opened_log(
                        self._clock(),
                        self._workspace_id,
                        state.session_id,
                        track.track_id,
                    )
                )
            decision = state.dispatcher.maybe_trigger(
                track,
                track_state.effective_status,
                snapshot.record_for(track.workflow_type),
                snapshot,
            )
            if decision == TriggerDecision.FIRE:
                self._launch_dispatch(state, track, manual=False)
            elif decision in _SKIP_REASONS:
                await self._emit_log(
                    build_trigger_skipped_log(
                        self._clock(),
                        self._workspace_id,
                        state.session_id,
                        track.track_id,
                        _SKIP_REASONS[decision],
                    )
                )

    def _launch_dispatch(
        self, state: SessionState, track: TrackDefinition, *, manual: bool
    ) -> None:
        task = asyncio.create_task(
            self._dispatch(state, track, self._build_request(track), manual)
        )
        state.dispatch_tasks.add(task)
        task.add_done_callback(state.dispatch_tasks.discard)

    def _build_request(self, track: TrackDefinition) -> StageStartRequest:
        trigger = track.trigger
        if trigger is None or self._callback_base_url is None:
            raise ValueError(f"Track {track.track_id} cannot be dispatched")
        return StageStartRequest(
            workspace_id=self._workspace_id,
            track_id=track.track_id,
            workflow=trigger.workflow,
            workflow_type=track.workflow_type,
            callback_url=f"{self._callback_base_url}/{trigger.callback_path}",
            handoff_status=trigger.handoff_status,
            handoff_message=trigger.handoff_message,
        )

    async def _dispatch(
        self,
        state: SessionState,
        track: TrackDefinition,
        request: StageStartRequest,
        manual: bool,
    ) -> None:
        starter = self._starter
        if starter is None:
            return
        try:
            await starter.start_stage(request)
        except DispatchError as exc:
            state.dispatcher.mark_failed(track.track_id, exc.info.message)
            await self._emit_log(
                build_trigger_failed_log(
                    self._clock(),
                    self._workspace_id,
                    state.session_id,
                    track.track_id,
                    request.workflow,
                    exc.info.message,
                )
            )
        else:
            state.dispatcher.mark_succeeded(track.track_id)
            await self._emit_log(
                build_trigger_dispatched_log(
                    self._clock(), state.session_id, request, manual
                )
            )
        if state.latest is not None:
            state.latest = self._overlay_dispatch_state(state, state.latest)
            await self._emit_progress(state, ProgressEvent.DISPATCH_UPDATED)
        if state is self._state:
            self.wake()

    async def _cancel_dispatches(self, state: SessionState) -> int:
        tasks = [task for task in state.dispatch_tasks if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        return len(tasks)

    def _overlay_dispatch_state(
        self, state: SessionState, progress: OnboardingProgress
    ) -> OnboardingProgress:
        tracks = []
        for track_state in progress.tracks:
            error = state.dispatcher.error_for(track_state.track_id)
            tracks.append(
                track_state.model_copy(
                    update={
                        "dispatch_error": error,
                        "dispatch_retry_available": error is not None,
                    }
                )
            )
        return progress.model_copy(update={"tracks": tracks})

    def _mark_retrying(self, state: SessionState, track: TrackDefinition) -> None:
        latest = state.latest
        if latest is None:
            return
        status = track.retry_status
        tracks = [
            track_state.model_copy(
                update={
                    "effective_status": status,
                    "phase_index": phase_index(track, status),
                    "phase_label": phase_label(track, status),
                    "badge": badge_for(track, status),
                    "error": None,
                    "error_kind": None,
                    "retry_available": False,
                    "dispatch_error": None,
                    "dispatch_retry_available": False,
                }
            )
            if track_state.track_id == track.track_id
            else track_state
            for track_state in latest.tracks
        ]
        state.latest = latest.model_copy(
            update={"tracks": tracks, "all_complete": False}
        )

    async def _log_transitions(
        self,
        state: SessionState,
        previous: OnboardingProgress | None,
        progress: OnboardingProgress,
    ) -> None:
        before = {t.track_id: t for t in previous.tracks} if previous else {}
        for track_state in progress.tracks:
            prior = before.get(track_state.track_id)
            prior_status = prior.effective_status if prior else None
            if prior_status != track_state.effective_status:
                await self._emit_log(
                    build_track_status_changed_log(
                        self._clock(),
                        self._workspace_id,
                        state.session_id,
                        track_state,
                        prior_status,
                    )
                )
            newly_stale = track_state.error_kind == TrackErrorKind.STALE and (
                prior is None or prior.error_kind != TrackErrorKind.STALE
            )
            if newly_stale and track_state.declared_status is not None:
                await self._emit_log(
                    build_track_stale_log(
                        self._clock(),
                        self._workspace_id,
                        state.session_id,
                        track_state.track_id,
                        track_state.declared_status,
                        track_state.updated_at,
                    )
                )
        if progress.all_complete and not (previous and previous.all_complete):
            await self._emit_log(
                build_all_complete_log(
                    self._clock(), self._workspace_id, state.session_id
                )
            )

    async def _emit_log(self, entry: LogEntry) -> None:
        if self._log_sink is None:
            return
        await self._log_sink.emit_log(entry)

    async def _emit_progress(self, state: SessionState, event: ProgressEvent) -> None:
        if self._progress_sink is None or state.latest is None:
            return
        await self._progress_sink.emit_progress(
            ProgressUpdate(
                session_id=state.session_id,
                event=event,
                timestamp=self._clock(),
                progress=state.latest,
            )
        )
