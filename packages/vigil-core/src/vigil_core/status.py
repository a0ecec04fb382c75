"""Status result builders for CLI and API surfaces."""

from __future__ import annotations

from vigil_core.controller import OnboardingController
from vigil_schemas.primitives import Timestamp
from vigil_schemas.responses import OnboardingStatusResult


def build_status_result(
    controller: OnboardingController, *, updated_at: Timestamp
) -> OnboardingStatusResult:
    """Build a status result from a controller's latest progress.

    Args:
        controller: Controller observing the workspace.
        updated_at: Timestamp used when no tick has completed yet.

    Returns:
        OnboardingStatusResult: Status payload.
    """
    progress = controller.latest
    return OnboardingStatusResult(
        workspace_id=controller.workspace_id,
        session_id=controller.session_id,
        updated_at=progress.computed_at if progress is not None else updated_at,
        elapsed_seconds=controller.elapsed_seconds(),
        can_continue=controller.can_continue,
        can_skip=controller.can_skip,
        progress=progress,
    )


def format_elapsed(seconds: float) -> str:
    """Format elapsed seconds as ``m:ss``.

    Args:
        seconds: Elapsed seconds.

    Returns:
        str: Formatted duration.
    """
    total = max(int(seconds), 0)
    minutes, remainder = divmod(total, 60)
    return f"{minutes}:{remainder:02d}"
