"""Registry of mounted observer sessions."""

from __future__ import annotations

from collections.abc import Callable
from uuid import UUID

from vigil_core import OnboardingController
from vigil_core.ports import (
    ChangeFeedProtocol,
    SessionError,
    SessionErrorCode,
    SessionErrorDetails,
    SessionErrorInfo,
)
from vigil_io.backend import InMemoryChangeFeed

type ControllerFactory = Callable[[str, ChangeFeedProtocol], OnboardingController]


class SessionRegistry:
    """Mounted controllers keyed by session id.

    Every mount creates a new controller and session; nothing carries over
    from an earlier session for the same workspace.
    """

    def __init__(
        self,
        factory: ControllerFactory,
        feed: InMemoryChangeFeed | None = None,
    ) -> None:
        """Initialize the registry.

        Args:
            factory: Builds a controller for a workspace and change feed.
            feed: Change feed shared by every session.
        """
        self._factory = factory
        self._feed = feed or InMemoryChangeFeed()
        self._sessions: dict[UUID, OnboardingController] = {}

    @property
    def feed(self) -> InMemoryChangeFeed:
        """Change feed used to wake sessions."""
        return self._feed

    def __len__(self) -> int:
        return len(self._sessions)

    async def mount(self, workspace_id: str) -> OnboardingController:
        """Mount a new session for a workspace.

        Returns:
            OnboardingController: Mounted controller.
        """
        controller = self._factory(workspace_id, self._feed)
        await controller.mount()
        self._sessions[controller.session_id] = controller
        return controller

    def get(self, session_id: UUID) -> OnboardingController:
        """Return the controller of a mounted session.

        Raises:
            SessionError: If the session is not mounted.
        """
        controller = self._sessions.get(session_id)
        if controller is None:
            raise SessionError(
                SessionErrorInfo(
                    code=SessionErrorCode.UNKNOWN_SESSION,
                    message=f"Unknown session: {session_id}",
                    details=SessionErrorDetails(session_id=session_id),
                )
            )
        return controller

    async def unmount(self, session_id: UUID) -> OnboardingController:
        """Unmount a session and forget it.

        Returns:
            OnboardingController: The unmounted controller.
        """
        controller = self.get(session_id)
        del self._sessions[session_id]
        await controller.unmount()
        return controller

    async def unmount_all(self) -> None:
        """Unmount every session."""
        for session_id in list(self._sessions):
            await self.unmount(session_id)
