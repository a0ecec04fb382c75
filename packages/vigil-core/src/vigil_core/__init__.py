"""vigil-core: Progress reconciliation for onboarding background jobs."""

from vigil_core.aggregate import all_tracks_complete
from vigil_core.controller import OnboardingController, SessionState
from vigil_core.gate import apply_gate, gate_is_open
from vigil_core.inference import (
    InferenceResult,
    InferenceRule,
    completion_ratio_met,
    infer_effective_status,
)
from vigil_core.phases import phase_index, phase_label, total_phases
from vigil_core.ports import (
    ChangeFeedProtocol,
    ChangeNotification,
    DispatchError,
    DispatchErrorCode,
    DispatchErrorDetails,
    DispatchErrorInfo,
    LogSinkProtocol,
    ProgressSinkProtocol,
    SessionError,
    SessionErrorCode,
    SessionErrorDetails,
    SessionErrorInfo,
    SourceError,
    SourceErrorCode,
    SourceErrorDetails,
    SourceErrorInfo,
    StageStarterProtocol,
    StageStartRequest,
    StatusSourceProtocol,
    StatusWrite,
    StatusWriterProtocol,
)
from vigil_core.progress import compute_progress_percent, estimate_eta_seconds
from vigil_core.reconciler import badge_for, build_track_state, reconcile
from vigil_core.scheduler import PollScheduler
from vigil_core.staleness import STALE_ERROR_MESSAGE, is_stale
from vigil_core.status import build_status_result, format_elapsed
from vigil_core.triggers import TriggerDecision, TriggerDispatcher
from vigil_core.version import VERSION

__version__ = "0.1.0"

__all__ = [
    "STALE_ERROR_MESSAGE",
    "VERSION",
    "ChangeFeedProtocol",
    "ChangeNotification",
    "DispatchError",
    "DispatchErrorCode",
    "DispatchErrorDetails",
    "DispatchErrorInfo",
    "InferenceResult",
    "InferenceRule",
    "LogSinkProtocol",
    "OnboardingController",
    "PollScheduler",
    "ProgressSinkProtocol",
    "SessionError",
    "SessionErrorCode",
    "SessionErrorDetails",
    "SessionErrorInfo",
    "SessionState",
    "SourceError",
    "SourceErrorCode",
    "SourceErrorDetails",
    "SourceErrorInfo",
    "StageStartRequest",
    "StageStarterProtocol",
    "StatusSourceProtocol",
    "StatusWrite",
    "StatusWriterProtocol",
    "TriggerDecision",
    "TriggerDispatcher",
    "all_tracks_complete",
    "apply_gate",
    "badge_for",
    "build_status_result",
    "build_track_state",
    "completion_ratio_met",
    "compute_progress_percent",
    "estimate_eta_seconds",
    "format_elapsed",
    "gate_is_open",
    "infer_effective_status",
    "is_stale",
    "phase_index",
    "phase_label",
    "reconcile",
    "total_phases",
]
